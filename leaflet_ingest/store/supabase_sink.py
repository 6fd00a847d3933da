"""Supabase leaflet sink with upsert on the URL key and retries."""
import asyncio
import logging
import threading
from datetime import datetime
from typing import Optional
from supabase import create_client, Client, ClientOptions
from tenacity import (
    Retrying,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    retry_if_not_exception_type,
)

from leaflet_ingest.config import config
from leaflet_ingest.errors import ChainMismatchError, WriteError
from leaflet_ingest.parse.dates import today
from leaflet_ingest.parse.models import Chain, LeafletRecord

logger = logging.getLogger(__name__)

COLUMNS = "url,chain,valid_from,valid_to,scraped_at"


class WriteAbandoned(Exception):
    """The awaiting upsert was cancelled; no further attempts are made."""


class SupabaseLeafletSink:
    """Writes leaflet records to a Supabase table keyed by ``url``.

    One write (chain lookup plus upsert attempts) fits inside ``timeout_ms``:
    each request gets a third of it and retries stop after another third. When
    the caller cancels a write, pending retries are dropped.
    """

    def __init__(self, table: str | None = None, timeout_ms: int | None = None):
        self.table = table or config.SUPABASE_TABLE
        self.timeout = (timeout_ms or config.TIMEOUT_MS) / 1000
        self.request_timeout = self.timeout / 3
        self.retry_budget = self.timeout / 3
        self.client: Optional[Client] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE:
            raise ValueError("Supabase configuration missing")
        self.client = create_client(
            config.SUPABASE_URL,
            config.SUPABASE_SERVICE_ROLE,
            options=ClientOptions(postgrest_client_timeout=self.request_timeout),
        )
        logger.info(f"Supabase sink ready (table {self.table})")

    async def close(self) -> None:
        self.client = None

    async def _run(self, fn, *args):
        """Run a sync Supabase call in the thread pool."""
        if self.client is None:
            raise RuntimeError("SupabaseLeafletSink is not open")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def upsert(self, record: LeafletRecord) -> None:
        """Insert or overwrite the record for ``record.url``."""
        row = record.to_row()
        abandoned = threading.Event()
        try:
            try:
                stored_chain = await self._run(self._chain_sync, record.url)
            except Exception as e:
                raise WriteError(record.url, f"supabase lookup error: {e}") from e
            if stored_chain is not None and stored_chain != row["chain"]:
                raise ChainMismatchError(record.url, stored_chain, row["chain"])

            try:
                await self._run(self._upsert_sync, row, abandoned)
            except Exception as e:
                logger.error(f"Supabase upsert error for {record.url}: {e}")
                raise WriteError(record.url, f"supabase error: {e}") from e
        except asyncio.CancelledError:
            abandoned.set()
            logger.warning(f"Abandoned upsert for {record.url}")
            raise

    def _chain_sync(self, url: str) -> Optional[str]:
        response = (
            self.client.table(self.table)
            .select("chain")
            .eq("url", url)
            .limit(1)
            .execute()
        )
        return response.data[0]["chain"] if response.data else None

    def _upsert_sync(self, row: dict, abandoned: threading.Event) -> None:
        """Synchronous upsert (called from thread pool)."""
        retrying = Retrying(
            stop=stop_after_attempt(3) | stop_after_delay(self.retry_budget),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
            retry=retry_if_not_exception_type(WriteAbandoned),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                if abandoned.is_set() or self.client is None:
                    raise WriteAbandoned(row["url"])
                (
                    self.client.table(self.table)
                    .upsert(row, on_conflict="url")
                    .execute()
                )

    async def get(self, url: str) -> Optional[LeafletRecord]:
        def query():
            return (
                self.client.table(self.table)
                .select(COLUMNS)
                .eq("url", url)
                .limit(1)
                .execute()
            )

        response = await self._run(query)
        return LeafletRecord.model_validate(response.data[0]) if response.data else None

    async def active(self, on: datetime, chain: Optional[Chain] = None) -> list[LeafletRecord]:
        """Leaflets whose inclusive window contains the UTC day of ``on``."""
        day = today(on).isoformat()

        def query():
            builder = (
                self.client.table(self.table)
                .select(COLUMNS)
                .lte("valid_from", day)
                .gte("valid_to", day)
            )
            if chain is not None:
                builder = builder.eq("chain", chain.value)
            return builder.order("chain").order("url").execute()

        response = await self._run(query)
        return [LeafletRecord.model_validate(row) for row in response.data]

    async def clear(self) -> int:
        """Delete every leaflet record; returns the number removed."""
        response = await self._run(
            lambda: self.client.table(self.table).delete().neq("url", "").execute()
        )
        removed = len(response.data or [])
        logger.info(f"Cleared {removed} leaflet records from Supabase")
        return removed

    async def test_connection(self) -> bool:
        """Test Supabase connection."""
        try:
            await self._run(
                lambda: self.client.table(self.table).select("url", count="exact").limit(1).execute()
            )
            logger.info("Supabase connection successful")
            return True
        except Exception as e:
            logger.error(f"Supabase connection test failed: {e}")
            return False
