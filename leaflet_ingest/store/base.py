"""Leaflet sink interface."""
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from leaflet_ingest.parse.models import Chain, LeafletRecord


class LeafletSink(Protocol):
    """Idempotent leaflet storage keyed by source URL."""

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def upsert(self, record: LeafletRecord) -> None: ...

    async def get(self, url: str) -> Optional[LeafletRecord]: ...

    async def active(self, on: datetime, chain: Optional[Chain] = None) -> list[LeafletRecord]: ...

    async def clear(self) -> int: ...


def build_sink(kind: str, db_path: Path | None = None, timeout_ms: int | None = None) -> LeafletSink:
    """Build an unopened sink: ``sqlite`` (local file) or ``supabase``."""
    if kind == "sqlite":
        from leaflet_ingest.store.sqlite_sink import SQLiteLeafletSink
        return SQLiteLeafletSink(db_path) if db_path else SQLiteLeafletSink()
    if kind == "supabase":
        from leaflet_ingest.store.supabase_sink import SupabaseLeafletSink
        return SupabaseLeafletSink(timeout_ms=timeout_ms)
    raise ValueError(f"Unknown sink kind: {kind}")
