"""Sorted collection of calendar slots and its reconciliation logic."""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Optional

from processor.calendar_event import CalendarEvent
from processor.models import SyncResult

logger = logging.getLogger(__name__)

ADDED = 'added'
UNCHANGED = 'unchanged'
VERSIONED = 'versioned'


class NoEventsFoundError(RuntimeError):
    """Raised when a place yields no schedule slots."""


class CalendarEventList:
    """
    Ordered set of CalendarEvent objects for one place and language.

    Events are kept sorted by (first_day, start_time, end_time, section).
    Two events sharing a static hash never overlap: a slot whose notice
    changed is closed and reopened as a new version instead of being
    edited in place.
    """

    EXPIRY_YEARS = 2

    def __init__(self, events: Optional[Iterable[CalendarEvent]] = None):
        self._events: List[CalendarEvent] = []
        for event in events or []:
            self._check(event)
            self._events.append(event)
        self.sort()

    @staticmethod
    def _check(event: Any) -> None:
        if not isinstance(event, CalendarEvent):
            raise TypeError(f"Not a CalendarEvent: {event!r}")

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[CalendarEvent]:
        return iter(self._events)

    def __getitem__(self, index: int) -> CalendarEvent:
        return self._events[index]

    def __repr__(self) -> str:
        return f"CalendarEventList({self._events!r})"

    def sort(self) -> None:
        self._events.sort(key=CalendarEvent.sort_key)

    def add(self, event: CalendarEvent) -> None:
        """Append an event and restore the sort order."""
        self._check(event)
        self._events.append(event)
        self.sort()

    @property
    def period_start(self) -> Optional[date]:
        return min((event.period_start for event in self._events), default=None)

    @property
    def period_end(self) -> Optional[date]:
        return max((event.period_end for event in self._events), default=None)

    @property
    def start_date(self) -> Optional[date]:
        return min((event.first_day for event in self._events), default=None)

    @property
    def end_date(self) -> Optional[date]:
        return max((event.last_day for event in self._events), default=None)

    def _find_latest_match(self, event: CalendarEvent) -> Optional[CalendarEvent]:
        """
        Find the highest-sorted stored version of the same slot.

        A stored event matches when it has the same static hash and its
        validity overlaps the candidate's.
        """
        static_hash = event.static_hash
        for index in range(len(self._events) - 1, -1, -1):
            candidate = self._events[index]
            if candidate.static_hash == static_hash and candidate.overlap(event):
                return candidate
        return None

    def upsert(
        self,
        event: CalendarEvent,
        now: Optional[datetime] = None,
        cleanup: bool = True
    ) -> str:
        """
        Reconcile one freshly scraped event against the stored ones.

        Args:
            event: Freshly scraped event
            now: Reference time (default: current time)
            cleanup: Drop degenerate and expired events afterwards

        Returns:
            'added', 'unchanged' or 'versioned'
        """
        self._check(event)
        now = now or datetime.now()

        match = self._find_latest_match(event)
        if match is None:
            outcome = ADDED
        elif match.dynamic_hash == event.dynamic_hash:
            match.last_day = event.last_day
            match.seen = True
            logger.debug(f"No change for {match.describe()}")
            return UNCHANGED
        else:
            logger.debug(f"Versioning {match.describe()}")
            match.end_before(now)
            event.start_after(now)
            outcome = VERSIONED

        event.seen = True
        self.add(event)
        if cleanup:
            self.cleanup(now)
        return outcome

    def upsert_all(
        self,
        events: Iterable[CalendarEvent],
        now: Optional[datetime] = None
    ) -> SyncResult:
        """
        Run a full reconciliation pass for a scraped batch.

        Every event of the batch is upserted, stored events that were not
        seen in the batch are closed as of today, then degenerate and
        expired events are dropped.

        Args:
            events: Freshly scraped events for this place and language
            now: Reference time (default: current time)

        Returns:
            SyncResult with per-outcome counts
        """
        now = now or datetime.now()
        result = SyncResult()

        for stored in self._events:
            stored.seen = False

        for event in events:
            outcome = self.upsert(event, now=now, cleanup=False)
            setattr(result, outcome, getattr(result, outcome) + 1)

        result.closed = self.end_unseen(now)
        result.expired = self.cleanup(now)
        self.sort()

        logger.info(
            f"Reconciled {len(self._events)} events: {result.added} added, "
            f"{result.unchanged} unchanged, {result.versioned} versioned, "
            f"{result.closed} closed, {result.expired} expired"
        )
        return result

    def end_unseen(self, now: Optional[datetime] = None) -> int:
        """
        Close still-valid events that were not seen during this pass.

        Args:
            now: Reference time (default: current time)

        Returns:
            Number of events closed
        """
        now = now or datetime.now()
        today = now.date()
        closed = 0

        for event in self._events:
            if event.seen or event.last_day < today:
                continue
            logger.debug(f"No longer listed: {event.describe()}")
            event.end_before(now)
            closed += 1

        return closed

    def expiry_threshold(self, now: Optional[datetime] = None) -> date:
        """Events whose last day falls before this date are dropped."""
        today = (now or datetime.now()).date()
        year = today.year - self.EXPIRY_YEARS
        try:
            return today.replace(year=year)
        except ValueError:
            # 29 February
            return today.replace(year=year, day=28)

    def cleanup(self, now: Optional[datetime] = None) -> int:
        """
        Drop events whose range is empty or that ended too long ago.

        Args:
            now: Reference time (default: current time)

        Returns:
            Number of events removed
        """
        threshold = self.expiry_threshold(now)
        kept = [
            event for event in self._events
            if event.first_day <= event.last_day and event.last_day >= threshold
        ]
        removed = len(self._events) - len(kept)
        self._events = kept
        return removed

    def override(
        self,
        other: 'CalendarEventList',
        use_period: bool = True,
        now: Optional[datetime] = None
    ) -> None:
        """
        Layer a higher-priority schedule over this one.

        Every event of this list loses the days covered by `other`, then the
        events of `other` are added.

        Args:
            other: Schedule taking precedence over its window
            use_period: Use the period bounds of `other` as the window
                instead of its actual first and last days
            now: Reference time for expiry (default: current time)
        """
        if not other:
            return

        if use_period:
            window_start, window_end = other.period_start, other.period_end
        else:
            window_start, window_end = other.start_date, other.end_date

        exclude_end = window_end + timedelta(days=1)
        fragments = [
            fragment
            for event in self._events
            for fragment in event.without_period(window_start, exclude_end)
        ]

        logger.debug(
            f"Overriding {window_start.isoformat()}..{window_end.isoformat()} "
            f"with {len(other)} events"
        )
        self._events = fragments + list(other)
        self.sort()
        self.cleanup(now)

    def to_list(self) -> List[Dict[str, Any]]:
        return [event.to_dict() for event in self._events]

    @classmethod
    def from_list(cls, records: Iterable[Dict[str, Any]]) -> 'CalendarEventList':
        """
        Build a list from serialized event records.

        Raises:
            ValueError: If a record cannot be converted
        """
        return cls(CalendarEvent.from_dict(record) for record in records)
