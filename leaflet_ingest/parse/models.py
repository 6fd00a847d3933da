"""Data models for leaflet records."""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


class Chain(str, Enum):
    """Retail chain tag stored with each leaflet."""

    SPAR = "SPAR"
    INTERSPAR = "Interspar"
    DM = "DM"
    LIDL = "Lidl"
    EUROSPIN = "Eurospin"


class FetchMode(str, Enum):
    RENDERED = "rendered"
    STATIC = "static"


class WaitStrategy(str, Enum):
    DOM_READY = "dom-ready"
    NETWORK_IDLE = "network-idle"

    @property
    def playwright_value(self) -> str:
        """Value for Playwright's ``wait_until`` argument."""
        return "domcontentloaded" if self is WaitStrategy.DOM_READY else "networkidle"


@dataclass(frozen=True)
class ValidityWindow:
    """Decoded validity interval; both ends inclusive, UTC midnight."""

    valid_from: datetime
    valid_to: datetime
    fallback: bool = False


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LeafletRecord(BaseModel):
    """One leaflet, keyed by its source URL."""

    url: str = Field(..., min_length=1, description="Source URL (natural key)")
    chain: Chain
    valid_from: datetime
    valid_to: datetime
    scraped_at: datetime = Field(default_factory=utc_now)

    @field_validator("valid_from", "valid_to")
    @classmethod
    def _midnight_utc(cls, value: datetime) -> datetime:
        value = _as_utc(value)
        return value.replace(hour=0, minute=0, second=0, microsecond=0)

    @field_validator("scraped_at")
    @classmethod
    def _scraped_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _window_order(self) -> "LeafletRecord":
        if self.valid_from > self.valid_to:
            raise ValueError("valid_from must not be after valid_to")
        return self

    @classmethod
    def from_window(
        cls, url: str, chain: Chain, window: ValidityWindow, scraped_at: datetime
    ) -> "LeafletRecord":
        return cls(
            url=url,
            chain=chain,
            valid_from=window.valid_from,
            valid_to=window.valid_to,
            scraped_at=scraped_at,
        )

    def to_row(self) -> dict:
        """Storage representation (ISO-8601 strings)."""
        return {
            "url": self.url,
            "chain": self.chain.value,
            "valid_from": self.valid_from.isoformat(),
            "valid_to": self.valid_to.isoformat(),
            "scraped_at": self.scraped_at.isoformat(),
        }
