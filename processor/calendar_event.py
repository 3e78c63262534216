"""Weekly recurring calendar slot with a bounded validity window."""
import copy
import hashlib
import json
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterator, Optional, Tuple, Union

TimeOfDay = Tuple[int, int]

DAY_NAMES = [
    'Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday'
]

DATETIME_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}')
DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')

REQUIRED_FIELDS = (
    'weekday', 'start_time', 'end_time', 'section', 'title',
    'period_start', 'period_end'
)


def weekday_of(day: date) -> int:
    """Return the weekday of a date, 0 being Sunday."""
    return day.isoweekday() % 7


def next_weekday(day: date, weekday: int) -> date:
    """Return the first date on or after `day` falling on `weekday`."""
    return day + timedelta(days=(weekday - weekday_of(day)) % 7)


def _as_datetime(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _json_default(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _time_of_day(value: Any, field: str) -> TimeOfDay:
    """Validate a deserialized [hour, minute] pair."""
    if (
        not isinstance(value, (list, tuple))
        or len(value) != 2
        or not all(isinstance(part, int) and not isinstance(part, bool) for part in value)
    ):
        raise ValueError(f"Invalid {field}: {value!r}")
    # Raises ValueError for out of range hours or minutes
    time(*value)
    return tuple(value)


def _parse_value(value: Any) -> Any:
    """Re-type a deserialized string if it looks like a timestamp or a date."""
    if not isinstance(value, str):
        return value
    if DATETIME_PATTERN.match(value):
        return datetime.fromisoformat(value)
    if DATE_PATTERN.match(value):
        return date.fromisoformat(value)
    return value


class CalendarEvent:
    """
    One weekly recurring slot, e.g. "open swim, Mondays 9h-11h".

    The slot recurs every week on `weekday` from `first_day` through
    `last_day`. Both are derived from the period bounds at construction
    and only move through `end_before`, `start_after` or an explicit
    assignment of `last_day`.
    """

    def __init__(
        self,
        weekday: int,
        start_time: TimeOfDay,
        end_time: TimeOfDay,
        section: str,
        title: str,
        period_start: date,
        period_end: date,
        notice: Optional[str] = None,
        notice_details: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        first_day: Optional[date] = None,
        last_day: Optional[date] = None,
        seen: bool = False
    ):
        if not 0 <= weekday <= 6:
            raise ValueError(f"Invalid weekday: {weekday}")

        self.weekday = weekday
        self.start_time = tuple(start_time)
        self.end_time = tuple(end_time)
        self.section = section
        self.title = title
        self.period_start = period_start
        self.period_end = period_end
        self.notice = notice
        self.notice_details = notice_details

        now = datetime.now()
        self.created_at = created_at or now
        self.updated_at = updated_at or now

        self.first_day = first_day or next_weekday(period_start, weekday)
        self.last_day = last_day or period_end
        self.seen = seen

    @staticmethod
    def build_title(place_title: str, section: str) -> str:
        """Display title of a slot: the place title followed by its section."""
        return f"{place_title} {section.lower()}"

    @property
    def start_datetime(self) -> datetime:
        return datetime.combine(self.first_day, time(*self.start_time))

    @property
    def end_datetime(self) -> datetime:
        end = datetime.combine(self.first_day, time(*self.end_time))
        # Slots running past midnight end the next day
        if self.end_time <= self.start_time:
            end += timedelta(days=1)
        return end

    def end_before(self, cutoff: Union[date, datetime]) -> None:
        """
        Stop this slot strictly before `cutoff`.

        Args:
            cutoff: First day on which the slot is no longer valid
        """
        self.last_day = _as_date(cutoff) - timedelta(days=1)
        self.updated_at = _as_datetime(cutoff)

    def start_after(self, cutoff: Union[date, datetime]) -> None:
        """
        Start this slot on the first matching weekday on or after `cutoff`.

        A slot that already starts later than that keeps its first day.

        Args:
            cutoff: Earliest day on which the slot may be valid
        """
        self.first_day = max(self.first_day, next_weekday(_as_date(cutoff), self.weekday))

    def without_period(self, exclude_start: date, exclude_end: date) -> Iterator['CalendarEvent']:
        """
        Yield copies of this slot with `[exclude_start, exclude_end)` removed.

        Yields nothing when the excluded window covers the whole slot, one
        unchanged copy when they do not intersect, and up to two truncated
        fragments (before and after the window) otherwise.

        Args:
            exclude_start: First excluded day
            exclude_end: First day after the excluded window

        Yields:
            CalendarEvent copies
        """
        if exclude_end <= self.first_day or exclude_start > self.last_day:
            yield copy.copy(self)
            return

        if exclude_start > self.first_day:
            before = copy.copy(self)
            before.end_before(exclude_start)
            yield before

        if exclude_end <= self.last_day:
            after = copy.copy(self)
            after.start_after(exclude_end)
            yield after

    def overlap(self, other: 'CalendarEvent') -> bool:
        """Whether both slots share at least one day of validity."""
        return not (other.last_day < self.first_day or other.first_day > self.last_day)

    @staticmethod
    def hash_of(data: Dict[str, Any]) -> str:
        """
        SHA256 digest of a mapping, independent of its key order.

        Args:
            data: Field name to value mapping

        Returns:
            64 character hex digest
        """
        canonical = sorted(data.items(), key=lambda item: item[0])
        payload = json.dumps(canonical, default=_json_default)
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()

    def static_data(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'weekday': self.weekday,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'period_start': self.period_start,
            'period_end': self.period_end,
            'section': self.section,
        }

    def dynamic_data(self) -> Dict[str, Any]:
        data = self.static_data()
        data.update({
            'notice': self.notice,
            'notice_details': self.notice_details,
        })
        return data

    @property
    def static_hash(self) -> str:
        return self.hash_of(self.static_data())

    @property
    def dynamic_hash(self) -> str:
        return self.hash_of(self.dynamic_data())

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to a JSON-ready record.

        Returns:
            Dictionary with dates and timestamps as ISO 8601 strings
        """
        data = self.dynamic_data()
        data.update({
            'first_day': self.first_day,
            'start_datetime': self.start_datetime,
            'end_datetime': self.end_datetime,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'last_day': self.last_day,
        })

        record = {}
        for key, value in data.items():
            if isinstance(value, (date, datetime)):
                value = value.isoformat()
            elif isinstance(value, tuple):
                value = list(value)
            record[key] = value
        return record

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> 'CalendarEvent':
        """
        Build an event from a record produced by `to_dict`.

        Args:
            record: Deserialized JSON object

        Returns:
            CalendarEvent instance

        Raises:
            ValueError: If an identity field is missing or malformed
        """
        if not isinstance(record, dict):
            raise ValueError(f"Event record is not an object: {record!r}")

        missing = [field for field in REQUIRED_FIELDS if record.get(field) is None]
        if missing:
            raise ValueError(f"Event record missing fields: {', '.join(missing)}")

        values = {key: _parse_value(value) for key, value in record.items()}

        for field in ('period_start', 'period_end', 'first_day', 'last_day'):
            if isinstance(values.get(field), datetime):
                values[field] = values[field].date()

        for field in ('period_start', 'period_end'):
            if not isinstance(values[field], date):
                raise ValueError(f"Invalid {field}: {record[field]!r}")

        for field in ('first_day', 'last_day'):
            if values.get(field) is not None and not isinstance(values[field], date):
                raise ValueError(f"Invalid {field}: {record[field]!r}")

        for field in ('created_at', 'updated_at'):
            if values.get(field) is not None and not isinstance(values[field], datetime):
                raise ValueError(f"Invalid {field}: {record[field]!r}")

        return cls(
            weekday=int(values['weekday']),
            start_time=_time_of_day(values['start_time'], 'start_time'),
            end_time=_time_of_day(values['end_time'], 'end_time'),
            section=values['section'],
            title=values['title'],
            period_start=values['period_start'],
            period_end=values['period_end'],
            notice=values.get('notice'),
            notice_details=values.get('notice_details'),
            created_at=values.get('created_at'),
            updated_at=values.get('updated_at'),
            first_day=values.get('first_day'),
            last_day=values.get('last_day'),
        )

    def sort_key(self) -> Tuple[date, TimeOfDay, TimeOfDay, str]:
        return (self.first_day, self.start_time, self.end_time, self.section)

    def __lt__(self, other: 'CalendarEvent') -> bool:
        return self.sort_key() < other.sort_key()

    def describe(self) -> str:
        """Short human label, e.g. "Pool open swim (Monday, 09h00-11h00)"."""
        start = 'h'.join(f"{part:02d}" for part in self.start_time)
        end = 'h'.join(f"{part:02d}" for part in self.end_time)
        return f"{self.title} ({DAY_NAMES[self.weekday]}, {start}-{end})"

    def __repr__(self) -> str:
        return (
            f"CalendarEvent({self.describe()!r}, "
            f"{self.first_day.isoformat()}..{self.last_day.isoformat()})"
        )
