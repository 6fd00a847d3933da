"""Ingestion runner: fetch, extract, decode and upsert for every chain."""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable, Iterable, Optional

from pydantic import ValidationError

from leaflet_ingest.chains import ChainStrategy
from leaflet_ingest.config import config
from leaflet_ingest.errors import FetchError, WriteError
from leaflet_ingest.fetch.client import PageFetcher
from leaflet_ingest.jobs.report import ChainReport, RunReport
from leaflet_ingest.parse.models import LeafletRecord, WaitStrategy, utc_now
from leaflet_ingest.store.base import LeafletSink

logger = logging.getLogger(__name__)


class IngestRunner:
    """Runs chain pipelines against a fetcher and a sink owned by the caller."""

    def __init__(
        self,
        fetcher: PageFetcher,
        sink: LeafletSink,
        concurrent: bool = True,
        url_concurrency: int | None = None,
        timeout_ms: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.fetcher = fetcher
        self.sink = sink
        self.concurrent = concurrent
        self.url_concurrency = url_concurrency or config.URL_CONCURRENCY
        self.timeout = (timeout_ms or config.TIMEOUT_MS) / 1000
        self.clock = clock

    @property
    def fetch_deadline(self) -> float:
        # navigation and the optional selector wait each get the full timeout
        return self.timeout * 2 + 5

    async def run(self, strategies: Iterable[ChainStrategy], run_id: str | None = None) -> RunReport:
        """Run every strategy; failures stay inside their chain's report."""
        strategies = list(strategies)
        started_at = self.clock()
        report = RunReport(run_id=run_id or str(uuid.uuid4()), started_at=started_at)
        logger.info(f"Run {report.run_id}: {len(strategies)} chain(s) {[s.key for s in strategies]}")

        if self.concurrent:
            report.chains = list(
                await asyncio.gather(*(self._guarded_chain(s, started_at) for s in strategies))
            )
        else:
            for strategy in strategies:
                report.chains.append(await self._guarded_chain(strategy, started_at))

        report.finish(self.clock())
        return report

    async def _guarded_chain(self, strategy: ChainStrategy, scraped_at: datetime) -> ChainReport:
        try:
            return await self.run_chain(strategy, scraped_at)
        except Exception as e:
            logger.error(f"[{strategy.key}] Unexpected error: {e}", exc_info=True)
            return ChainReport(chain=strategy.key, error=f"unexpected error: {e}")

    async def run_chain(self, strategy: ChainStrategy, scraped_at: datetime) -> ChainReport:
        """Fetch the chain's seed page and ingest every leaflet link on it."""
        report = ChainReport(chain=strategy.key)
        logger.info(f"[{strategy.key}] Fetching {strategy.seed_url}")
        try:
            html = await asyncio.wait_for(
                self.fetcher.fetch(
                    strategy.seed_url,
                    mode=strategy.mode,
                    wait_strategy=strategy.wait_strategy,
                    wait_for_selector=strategy.wait_for_selector,
                ),
                timeout=self.fetch_deadline,
            )
        except asyncio.TimeoutError:
            report.error = str(FetchError(strategy.seed_url, f"no response within {self.fetch_deadline:g}s"))
            logger.error(f"[{strategy.key}] Fetch failed: {report.error}")
            return report
        except FetchError as e:
            report.error = str(e)
            logger.error(f"[{strategy.key}] Fetch failed: {e}")
            return report

        urls = strategy.extract(html)
        report.found = len(urls)
        if not urls:
            logger.info(f"[{strategy.key}] No leaflet links found")
            return report
        logger.info(f"[{strategy.key}] Found {len(urls)} leaflet URL(s)")

        return await self.ingest_urls(strategy, urls, scraped_at, report)

    async def ingest_urls(
        self,
        strategy: ChainStrategy,
        urls: Iterable[str],
        scraped_at: Optional[datetime] = None,
        report: Optional[ChainReport] = None,
    ) -> ChainReport:
        """Decode and upsert known leaflet URLs without fetching."""
        urls = sorted(set(urls))
        if report is None:
            report = ChainReport(chain=strategy.key, found=len(urls))
        scraped_at = scraped_at or self.clock()
        semaphore = asyncio.Semaphore(self.url_concurrency)

        async def process(url: str) -> None:
            async with semaphore:
                await self._ingest_url(strategy, url, scraped_at, report)

        await asyncio.gather(*(process(url) for url in urls))
        return report

    async def _ingest_url(
        self, strategy: ChainStrategy, url: str, scraped_at: datetime, report: ChainReport
    ) -> None:
        try:
            window = strategy.decode(url, scraped_at)
            report.record_decoded(window.fallback)
            chain = strategy.tag(url)
            record = LeafletRecord.from_window(url, chain, window, scraped_at)
        except ValidationError as e:
            report.record_failure(url, f"invalid record: {e.errors()[0]['msg']}")
            logger.warning(f"[{strategy.key}] Invalid record for {url}: {e}")
            return
        except Exception as e:
            report.record_failure(url, f"decode error: {e}")
            logger.error(f"[{strategy.key}] Could not decode {url}: {e}", exc_info=True)
            return

        try:
            await asyncio.wait_for(self.sink.upsert(record), timeout=self.timeout)
        except asyncio.TimeoutError:
            report.record_failure(url, f"write timed out after {self.timeout:g}s")
            logger.error(f"[{strategy.key}] Write timed out for {url}")
            return
        except WriteError as e:
            report.record_failure(url, e.reason)
            logger.error(f"[{strategy.key}] Write failed: {e}")
            return
        except Exception as e:
            report.record_failure(url, f"unexpected write error: {e}")
            logger.error(f"[{strategy.key}] Unexpected write error for {url}: {e}", exc_info=True)
            return

        report.record_upserted()
        logger.info(
            f"Upserted {chain.value} leaflet {url} "
            f"({record.valid_from.date()}..{record.valid_to.date()}"
            f"{', fallback' if window.fallback else ''})"
        )


async def run_ingest(
    strategies: Iterable[ChainStrategy],
    sink: LeafletSink,
    *,
    run_id: str | None = None,
    concurrent: bool = True,
    timeout_ms: int | None = None,
    user_agent: str | None = None,
    wait_strategy: WaitStrategy | None = None,
) -> RunReport:
    """Run a full ingestion against an opened sink; the browser is closed on exit."""
    async with PageFetcher(
        timeout_ms=timeout_ms, user_agent=user_agent, wait_strategy=wait_strategy
    ) as fetcher:
        runner = IngestRunner(fetcher, sink, concurrent=concurrent, timeout_ms=timeout_ms)
        return await runner.run(strategies, run_id=run_id)
