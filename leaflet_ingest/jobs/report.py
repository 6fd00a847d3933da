"""Per-chain and per-run ingestion reports."""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class ChainReport:
    """Outcome of one chain's pipeline in one run."""

    chain: str
    found: int = 0
    decoded_pattern: int = 0
    decoded_fallback: int = 0
    upserted: int = 0
    failed: int = 0
    error: Optional[str] = None
    failures: dict[str, str] = field(default_factory=dict)

    def record_decoded(self, fallback: bool) -> None:
        if fallback:
            self.decoded_fallback += 1
        else:
            self.decoded_pattern += 1

    def record_upserted(self) -> None:
        self.upserted += 1

    def record_failure(self, url: str, reason: str) -> None:
        self.failed += 1
        self.failures[url] = reason

    @property
    def ok(self) -> bool:
        return self.error is None and self.failed == 0

    def get_summary(self) -> dict:
        return {
            "chain": self.chain,
            "found": self.found,
            "decoded_pattern": self.decoded_pattern,
            "decoded_fallback": self.decoded_fallback,
            "upserted": self.upserted,
            "failed": self.failed,
            "error": self.error,
            "failures": dict(self.failures),
        }


@dataclass
class RunReport:
    """All chain reports of one ingestion run."""

    run_id: str
    started_at: datetime
    chains: list[ChainReport] = field(default_factory=list)
    finished_at: Optional[datetime] = None
    _start_monotonic: float = field(default_factory=time.monotonic, repr=False)

    def finish(self, finished_at: datetime) -> None:
        self.finished_at = finished_at

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self._start_monotonic

    @property
    def ok(self) -> bool:
        return all(report.ok for report in self.chains)

    def get(self, chain: str) -> Optional[ChainReport]:
        return next((report for report in self.chains if report.chain == chain), None)

    def get_summary(self) -> dict:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "ok": self.ok,
            "chains": [report.get_summary() for report in self.chains],
        }

    def log(self) -> None:
        """Log the final report."""
        logger.info("=" * 60)
        logger.info("FINAL REPORT")
        logger.info(f"Run ID: {self.run_id}")
        logger.info(f"Elapsed: {self.elapsed_seconds:.1f}s")
        for report in self.chains:
            if report.error:
                logger.info(f"{report.chain}: FAILED ({report.error})")
                continue
            logger.info(
                f"{report.chain}: found={report.found} "
                f"pattern={report.decoded_pattern} fallback={report.decoded_fallback} "
                f"upserted={report.upserted} failed={report.failed}"
            )
            for url, reason in report.failures.items():
                logger.info(f"  failed {url}: {reason}")
        logger.info("=" * 60)
