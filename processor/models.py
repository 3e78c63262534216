"""Data models for schedule processing."""
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional


@dataclass
class RawSlot:
    """Raw schedule row from the place scraper."""
    day: str
    start_time: str
    end_time: str
    section: str
    group: str = 'default'
    title: Optional[str] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None


@dataclass
class PlacePage:
    """Everything scraped from a single place page."""
    place: str
    language: str
    url: str
    title: str
    season_from: Optional[date]
    season_to: Optional[date]
    notice: Optional[str] = None
    notice_details: Optional[str] = None
    place_name: Optional[str] = None
    author: Optional[str] = None
    address: Optional[str] = None
    image: Optional[str] = None
    slots: List[RawSlot] = field(default_factory=list)


@dataclass
class SyncResult:
    """Result of a reconciliation pass."""
    added: int = 0
    unchanged: int = 0
    versioned: int = 0
    closed: int = 0
    expired: int = 0


@dataclass
class PlaceResult:
    """Outcome of processing one place/language pair."""
    place: str
    language: str
    scraped: int = 0
    stored: int = 0
    sync: Optional[SyncResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None
