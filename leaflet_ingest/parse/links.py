"""Extract candidate leaflet links from chain pages."""
import logging
import re
from dataclasses import dataclass
from urllib.parse import urljoin

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)

SKIPPED_SCHEMES = ("#", "javascript:", "mailto:", "tel:")


@dataclass(frozen=True)
class LinkRule:
    """Chain-specific link matcher.

    A link is kept when its absolute form contains any of ``contains``,
    matches none of the ``exclude`` patterns and, if set, ends with ``suffix``.
    """

    contains: tuple[str, ...]
    exclude: tuple[str, ...] = ()
    suffix: str | None = None

    def matches(self, url: str) -> bool:
        if any(re.search(pattern, url, re.IGNORECASE) for pattern in self.exclude):
            return False
        if self.suffix and not url.endswith(self.suffix):
            return False
        return any(needle in url for needle in self.contains)


def extract_links(html_content: str, base_url: str, rule: LinkRule) -> set[str]:
    """
    Collect absolute URLs of <a href> elements accepted by ``rule``.
    Returns an empty set when nothing matches.
    """
    if not html_content:
        return set()

    parser = HTMLParser(html_content)
    links: set[str] = set()

    for link in parser.css("a[href]"):
        normalized = _normalize_url(link.attributes.get("href"), base_url)
        if normalized and rule.matches(normalized):
            links.add(normalized)

    logger.debug(f"Extracted {len(links)} links from {base_url}")
    return links


def _normalize_url(url: str | None, base_url: str) -> str | None:
    """Normalize URL to absolute form."""
    if not url:
        return None
    url = url.strip()
    if not url or url.lower().startswith(SKIPPED_SCHEMES):
        return None
    return urljoin(base_url, url)
