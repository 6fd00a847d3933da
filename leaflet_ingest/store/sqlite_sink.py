"""SQLite leaflet sink for local runs and dry runs."""
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiosqlite

from leaflet_ingest.config import config
from leaflet_ingest.errors import ChainMismatchError, WriteError
from leaflet_ingest.parse.dates import today
from leaflet_ingest.parse.models import Chain, LeafletRecord

logger = logging.getLogger(__name__)

COLUMNS = "url, chain, valid_from, valid_to, scraped_at"


class SQLiteLeafletSink:
    """Leaflet records in a local SQLite file, one row per URL."""

    def __init__(self, db_path: Path = config.LOCAL_DB):
        self.db_path = Path(db_path)
        self._db: Optional[aiosqlite.Connection] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        """Connect and create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS leaflets (
                url TEXT PRIMARY KEY,
                chain TEXT NOT NULL,
                valid_from TEXT NOT NULL,
                valid_to TEXT NOT NULL,
                scraped_at TEXT NOT NULL
            )
            """
        )
        await self._db.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_leaflets_active
            ON leaflets(chain, valid_from, valid_to)
            """
        )
        await self._db.commit()
        logger.info(f"Leaflet database ready at {self.db_path}")

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("SQLiteLeafletSink is not open")
        return self._db

    async def upsert(self, record: LeafletRecord) -> None:
        """Insert or overwrite the record for ``record.url``."""
        row = record.to_row()
        try:
            cursor = await self.db.execute(
                "SELECT chain FROM leaflets WHERE url = ?", (record.url,)
            )
            existing = await cursor.fetchone()
            if existing is not None and existing["chain"] != row["chain"]:
                raise ChainMismatchError(record.url, existing["chain"], row["chain"])

            await self.db.execute(
                f"""
                INSERT INTO leaflets ({COLUMNS})
                VALUES (:url, :chain, :valid_from, :valid_to, :scraped_at)
                ON CONFLICT(url) DO UPDATE SET
                    chain = excluded.chain,
                    valid_from = excluded.valid_from,
                    valid_to = excluded.valid_to,
                    scraped_at = excluded.scraped_at
                """,
                row,
            )
            await self.db.commit()
        except sqlite3.Error as e:
            raise WriteError(record.url, f"sqlite error: {e}") from e

    async def get(self, url: str) -> Optional[LeafletRecord]:
        cursor = await self.db.execute(
            f"SELECT {COLUMNS} FROM leaflets WHERE url = ?", (url,)
        )
        row = await cursor.fetchone()
        return LeafletRecord.model_validate(dict(row)) if row else None

    async def active(self, on: datetime, chain: Optional[Chain] = None) -> list[LeafletRecord]:
        """Leaflets whose inclusive window contains the UTC day of ``on``."""
        day = today(on).isoformat()
        query = f"SELECT {COLUMNS} FROM leaflets WHERE valid_from <= ? AND valid_to >= ?"
        params: list = [day, day]
        if chain is not None:
            query += " AND chain = ?"
            params.append(chain.value)
        query += " ORDER BY chain, url"
        cursor = await self.db.execute(query, params)
        return [LeafletRecord.model_validate(dict(row)) for row in await cursor.fetchall()]

    async def count(self) -> int:
        cursor = await self.db.execute("SELECT COUNT(*) FROM leaflets")
        (total,) = await cursor.fetchone()
        return total

    async def clear(self) -> int:
        """Delete every leaflet record; returns the number removed."""
        cursor = await self.db.execute("DELETE FROM leaflets")
        await self.db.commit()
        logger.info(f"Cleared {cursor.rowcount} leaflet records")
        return cursor.rowcount
