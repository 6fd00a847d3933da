"""Tests for the ingestion runner."""
import asyncio
from datetime import datetime, timezone

from leaflet_ingest.chains import DM, EUROSPIN, LIDL, SPAR, STRATEGIES
from leaflet_ingest.errors import FetchError, WriteError
from leaflet_ingest.jobs.runner import IngestRunner
from leaflet_ingest.parse.models import Chain
from leaflet_ingest.store.sqlite_sink import SQLiteLeafletSink

NOW = datetime(2025, 6, 20, 6, 0, tzinfo=timezone.utc)

PAGES = {
    SPAR.seed_url: """
        <a href="/letci/aktualni-letci-250618">SPAR</a>
        <a href="/letci/aktualni-letci-250618">SPAR again</a>
        <a href="/letci/interspar-aktualni-katalozi-250617/">Interspar</a>
        <a href="/letci/aktualni-letci-250618/getPdf.ashx">PDF</a>
    """,
    DM.seed_url: '<a href="https://katalog.dm.hr/dm_16_6-30_6_2025-web">DM</a>',
    LIDL.seed_url: """
        <a href="/l/hr/letak/vrijedi-od-18-06-do-21-06/view/flyer/page/1">Lidl</a>
        <a href="/l/hr/letak/tjedna-ponuda">Lidl bez datuma</a>
    """,
    EUROSPIN.seed_url: '<a href="/katalog/promotion?code=P162025HR">Eurospin</a>',
}


def utc(year, month, day):
    return datetime(year, month, day, tzinfo=timezone.utc)


class FakeFetcher:
    """Serves canned pages; URLs in ``failing`` raise FetchError."""

    def __init__(self, pages, failing=(), hanging=()):
        self.pages = pages
        self.failing = set(failing)
        self.hanging = set(hanging)
        self.calls = []

    async def fetch(self, url, mode=None, wait_strategy=None, wait_for_selector=None):
        self.calls.append((url, mode, wait_strategy, wait_for_selector))
        if url in self.failing:
            raise FetchError(url, "navigation failed")
        if url in self.hanging:
            await asyncio.sleep(3600)
        return self.pages.get(url, "")


class FlakySink(SQLiteLeafletSink):
    """SQLite sink that refuses writes for selected URLs."""

    def __init__(self, db_path, refuse=()):
        super().__init__(db_path)
        self.refuse = set(refuse)

    async def upsert(self, record):
        if record.url in self.refuse:
            raise WriteError(record.url, "connection reset")
        await super().upsert(record)


def run_pipeline(sink, fetcher, strategies, **kwargs):
    async def main():
        async with sink:
            runner = IngestRunner(fetcher, sink, clock=lambda: NOW, **kwargs)
            report = await runner.run(strategies)
            stored = await sink.active(utc(2025, 6, 20))
            total = await sink.count()
            return report, stored, total

    return asyncio.run(main())


def test_spar_end_to_end(tmp_path):
    """Test the SPAR page produces the expected normalized record."""
    sink = SQLiteLeafletSink(tmp_path / "leaflets.db")
    report, stored, _ = run_pipeline(sink, FakeFetcher(PAGES), [SPAR])

    by_url = {r.url: r for r in stored}
    spar = by_url["https://www.spar.hr/letci/aktualni-letci-250618"]
    assert spar.chain is Chain.SPAR
    assert spar.valid_from.isoformat() == "2025-06-18T00:00:00+00:00"
    assert spar.valid_to.isoformat() == "2025-06-25T00:00:00+00:00"
    assert spar.scraped_at == NOW

    interspar = by_url["https://www.spar.hr/letci/interspar-aktualni-katalozi-250617/"]
    assert interspar.chain is Chain.INTERSPAR

    chain_report = report.get("spar")
    assert chain_report.found == 2
    assert chain_report.decoded_pattern == 2
    assert chain_report.upserted == 2
    assert chain_report.failed == 0


def test_all_chains(tmp_path):
    sink = SQLiteLeafletSink(tmp_path / "leaflets.db")
    report, _, total = run_pipeline(sink, FakeFetcher(PAGES), STRATEGIES.values())

    assert report.ok
    assert total == 6
    lidl = report.get("lidl")
    assert (lidl.found, lidl.decoded_pattern, lidl.decoded_fallback) == (2, 1, 1)
    assert report.get("dm").upserted == 1


def test_eurospin_end_to_end(tmp_path):
    async def main():
        async with SQLiteLeafletSink(tmp_path / "leaflets.db") as sink:
            runner = IngestRunner(FakeFetcher(PAGES), sink, clock=lambda: NOW)
            await runner.run([EUROSPIN])
            return await sink.get("https://www.eurospin.hr/katalog/promotion?code=P162025HR")

    stored = asyncio.run(main())
    assert stored.chain is Chain.EUROSPIN
    assert stored.valid_from.isoformat() == "2025-06-20T00:00:00+00:00"
    assert stored.valid_to.isoformat() == "2025-06-27T00:00:00+00:00"


def test_fetch_error_isolated_to_chain(tmp_path):
    """Test one chain's fetch failure leaves the other chains' upserts intact."""
    sink = SQLiteLeafletSink(tmp_path / "leaflets.db")
    fetcher = FakeFetcher(PAGES, failing={DM.seed_url})
    report, _, total = run_pipeline(sink, fetcher, STRATEGIES.values())

    dm = report.get("dm")
    assert "navigation failed" in dm.error
    assert dm.upserted == 0
    assert not report.ok
    for key in ("spar", "lidl", "eurospin"):
        assert report.get(key).error is None
        assert report.get(key).upserted > 0
    assert total == 5


def test_hanging_fetch_times_out(tmp_path):
    sink = SQLiteLeafletSink(tmp_path / "leaflets.db")
    fetcher = FakeFetcher(PAGES, hanging={LIDL.seed_url})

    class ShortDeadlineRunner(IngestRunner):
        fetch_deadline = 0.05

    async def main():
        async with sink:
            runner = ShortDeadlineRunner(fetcher, sink, clock=lambda: NOW)
            return await runner.run([LIDL, EUROSPIN])

    report = asyncio.run(main())
    assert "no response within 0.05s" in report.get("lidl").error
    assert report.get("eurospin").upserted == 1


def test_write_error_isolated_to_url(tmp_path):
    """Test a failed write does not stop the rest of the chain's batch."""
    bad = "https://www.spar.hr/letci/aktualni-letci-250618"
    sink = FlakySink(tmp_path / "leaflets.db", refuse={bad})
    report, stored, _ = run_pipeline(sink, FakeFetcher(PAGES), [SPAR])

    spar = report.get("spar")
    assert spar.found == 2
    assert spar.upserted == 1
    assert spar.failed == 1
    assert spar.failures == {bad: "connection reset"}
    assert [r.chain for r in stored] == [Chain.INTERSPAR]


def test_empty_page_is_not_an_error(tmp_path):
    sink = SQLiteLeafletSink(tmp_path / "leaflets.db")
    report, _, total = run_pipeline(sink, FakeFetcher({}), [LIDL])

    lidl = report.get("lidl")
    assert lidl.error is None
    assert lidl.found == 0
    assert report.ok
    assert total == 0


def test_rerun_is_idempotent(tmp_path):
    db_path = tmp_path / "leaflets.db"
    run_pipeline(SQLiteLeafletSink(db_path), FakeFetcher(PAGES), STRATEGIES.values())
    report, _, total = run_pipeline(SQLiteLeafletSink(db_path), FakeFetcher(PAGES), STRATEGIES.values())

    assert total == 6
    assert sum(r.upserted for r in report.chains) == 6


def test_sequential_run_passes_fetch_options(tmp_path):
    sink = SQLiteLeafletSink(tmp_path / "leaflets.db")
    fetcher = FakeFetcher(PAGES)
    report, _, _ = run_pipeline(sink, fetcher, [DM, LIDL], concurrent=False)

    assert [c.chain for c in report.chains] == ["dm", "lidl"]
    dm_call = fetcher.calls[0]
    assert dm_call[0] == DM.seed_url
    assert dm_call[3] == 'a[href*="katalog.dm.hr"]'


def test_ingest_urls_without_fetching(tmp_path):
    async def main():
        async with SQLiteLeafletSink(tmp_path / "leaflets.db") as sink:
            fetcher = FakeFetcher({})
            runner = IngestRunner(fetcher, sink, clock=lambda: NOW)
            report = await runner.ingest_urls(
                EUROSPIN,
                ["https://www.eurospin.hr/katalog/promotion?code=P162025HR"],
            )
            return report, fetcher.calls

    report, calls = asyncio.run(main())
    assert calls == []
    assert (report.found, report.upserted) == (1, 1)


class ExplodingSink(SQLiteLeafletSink):
    """SQLite sink whose driver fails with a non-WriteError for selected URLs."""

    def __init__(self, db_path, explode=()):
        super().__init__(db_path)
        self.explode = set(explode)

    async def upsert(self, record):
        if record.url in self.explode:
            raise RuntimeError("driver exploded")
        await super().upsert(record)


def test_unexpected_write_error_isolated_to_url(tmp_path):
    """Test an arbitrary sink exception fails only its URL and keeps the counts."""
    bad = "https://www.spar.hr/letci/aktualni-letci-250618"
    sink = ExplodingSink(tmp_path / "leaflets.db", explode={bad})
    report, stored, total = run_pipeline(sink, FakeFetcher(PAGES), [SPAR])

    spar = report.get("spar")
    assert spar.error is None
    assert spar.found == 2
    assert spar.upserted == 1
    assert spar.failed == 1
    assert "driver exploded" in spar.failures[bad]
    assert total == 1


def test_decoder_exception_isolated_to_url(tmp_path):
    from dataclasses import replace

    def decoder(url, now):
        if "250618" in url:
            raise ValueError("bad slug")
        return SPAR.decoder(url, now)

    strategy = replace(SPAR, decoder=decoder)
    sink = SQLiteLeafletSink(tmp_path / "leaflets.db")
    report, _, total = run_pipeline(sink, FakeFetcher(PAGES), [strategy])

    spar = report.get("spar")
    assert spar.error is None
    assert (spar.upserted, spar.failed) == (1, 1)
    assert total == 1


class SlowSink(SQLiteLeafletSink):
    async def upsert(self, record):
        await asyncio.sleep(5)


def test_write_timeout_message_keeps_subsecond_precision(tmp_path):
    sink = SlowSink(tmp_path / "leaflets.db")
    report, _, _ = run_pipeline(sink, FakeFetcher(PAGES), [EUROSPIN], timeout_ms=100)

    eurospin = report.get("eurospin")
    assert eurospin.failed == 1
    assert list(eurospin.failures.values()) == ["write timed out after 0.1s"]
