"""Chain strategies: where each chain publishes leaflets and how to read them."""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from leaflet_ingest.parse.dates import decode_dm, decode_eurospin, decode_lidl, decode_spar
from leaflet_ingest.parse.links import LinkRule, extract_links
from leaflet_ingest.parse.models import Chain, FetchMode, ValidityWindow, WaitStrategy

Decoder = Callable[[str, Optional[datetime]], ValidityWindow]


@dataclass(frozen=True)
class ChainStrategy:
    """Extract and decode capabilities for one chain."""

    key: str
    seed_url: str
    rule: LinkRule
    decoder: Decoder
    chain: Chain
    mode: FetchMode = FetchMode.RENDERED
    wait_strategy: Optional[WaitStrategy] = None
    wait_for_selector: Optional[str] = None

    def extract(self, html_content: str) -> set[str]:
        return extract_links(html_content, self.seed_url, self.rule)

    def decode(self, url: str, now: Optional[datetime] = None) -> ValidityWindow:
        return self.decoder(url, now)

    def tag(self, url: str) -> Chain:
        """Chain tag for a URL produced by this strategy."""
        if self.chain is Chain.SPAR and "interspar" in url.lower():
            return Chain.INTERSPAR
        return self.chain


SPAR = ChainStrategy(
    key="spar",
    seed_url="https://www.spar.hr/letci-i-katalozi/",
    rule=LinkRule(
        contains=("aktualni-letci-", "aktualni-katalozi-"),
        # getPdf / ViewPdf proxy endpoints
        exclude=(r"\.ashx$",),
    ),
    decoder=decode_spar,
    chain=Chain.SPAR,
)

DM = ChainStrategy(
    key="dm",
    seed_url="https://www.dm.hr/dm-katalog-470900",
    rule=LinkRule(contains=("katalog.dm.hr",), suffix="-web"),
    decoder=decode_dm,
    chain=Chain.DM,
    wait_strategy=WaitStrategy.NETWORK_IDLE,
    wait_for_selector='a[href*="katalog.dm.hr"]',
)

LIDL = ChainStrategy(
    key="lidl",
    seed_url="https://www.lidl.hr/c/online-katalog/s10027538",
    rule=LinkRule(contains=("/l/hr/letak/",)),
    decoder=decode_lidl,
    chain=Chain.LIDL,
)

EUROSPIN = ChainStrategy(
    key="eurospin",
    seed_url="https://www.eurospin.hr/katalog/",
    rule=LinkRule(contains=("promotion?code=",), exclude=(r"\.pdf$",)),
    decoder=decode_eurospin,
    chain=Chain.EUROSPIN,
)

STRATEGIES: dict[str, ChainStrategy] = {
    strategy.key: strategy for strategy in (SPAR, DM, LIDL, EUROSPIN)
}


def get_strategies(keys: list[str] | None = None) -> list[ChainStrategy]:
    """Strategies for the given keys (all when empty); unknown keys raise KeyError."""
    if not keys:
        return list(STRATEGIES.values())
    unknown = [key for key in keys if key not in STRATEGIES]
    if unknown:
        raise KeyError(f"Unknown chain(s): {', '.join(unknown)}")
    return [STRATEGIES[key] for key in dict.fromkeys(keys)]
