"""Event processor turning scraped schedule rows into calendar events."""
import logging
import re
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from processor.calendar_event import CalendarEvent
from processor.event_list import CalendarEventList
from processor.models import PlacePage, RawSlot

logger = logging.getLogger(__name__)

WEEKDAY_TRANSLATIONS = {
    'dimanche': 'sunday',
    'lundi': 'monday',
    'mardi': 'tuesday',
    'mercredi': 'wednesday',
    'jeudi': 'thursday',
    'vendredi': 'friday',
    'samedi': 'saturday',
}

WEEKDAY_NUMBERS = {
    'sunday': 0,
    'monday': 1,
    'tuesday': 2,
    'wednesday': 3,
    'thursday': 4,
    'friday': 5,
    'saturday': 6,
}

DEFAULT_GROUP = 'default'


def translate_weekday(name: str) -> str:
    """
    Translate a French day name to English.

    Args:
        name: Day name as found on the page

    Returns:
        English day name, or the lowercased input when it has no translation
    """
    key = name.strip().lower()
    return WEEKDAY_TRANSLATIONS.get(key, key)


class EventProcessor:
    """Processor for validating and normalizing scraped schedule rows."""

    TIME_FORMATS = [
        '%H:%M',         # 24-hour format
        '%I:%M %p',      # 12-hour format with AM/PM
        '%I:%M%p',       # 12-hour format without space
        '%I %p',         # Hour only with AM/PM
        '%I%p',          # Hour only without space
    ]

    def process_page(self, page: PlacePage) -> CalendarEventList:
        """
        Build the calendar events of a scraped place page.

        Rows are grouped by schedule; the default schedule is the base and
        every special-period schedule is layered over it.

        Args:
            page: PlacePage from the scraper

        Returns:
            CalendarEventList of freshly scraped events
        """
        groups: Dict[str, List[CalendarEvent]] = {}

        for slot in page.slots:
            try:
                event = self._process_single_slot(slot, page)
            except Exception as e:
                logger.warning(f"Failed to process slot '{slot.section}': {e}")
                continue
            if event:
                groups.setdefault(slot.group, []).append(event)

        if not groups:
            logger.info(f"No valid slots out of {len(page.slots)} for {page.place}")
            return CalendarEventList()

        base_key = DEFAULT_GROUP if DEFAULT_GROUP in groups else next(iter(groups))
        events = CalendarEventList(groups.pop(base_key))
        for group_key, group_events in groups.items():
            logger.debug(f"Applying schedule '{group_key}' over '{base_key}'")
            events.override(CalendarEventList(group_events), use_period=True)

        for event in events:
            event.seen = True
            logger.debug(f"Scraped event: {event.describe()}")

        logger.info(
            f"Processed {len(events)} events out of {len(page.slots)} "
            f"scraped slots for {page.place}"
        )
        return events

    def _process_single_slot(self, slot: RawSlot, page: PlacePage) -> Optional[CalendarEvent]:
        """
        Process a single schedule row.

        Args:
            slot: Raw schedule row
            page: Page the row was found on

        Returns:
            CalendarEvent or None if validation fails
        """
        if not self._validate_required_fields(slot):
            return None

        weekday = self._normalize_weekday(slot.day)
        if weekday is None:
            logger.warning(f"Invalid day for slot '{slot.section}': {slot.day}")
            return None

        start_time = self._normalize_time(slot.start_time)
        end_time = self._normalize_time(slot.end_time)
        if not start_time or not end_time:
            logger.warning(
                f"Invalid time range for slot '{slot.section}': "
                f"{slot.start_time} - {slot.end_time}"
            )
            return None

        if start_time >= end_time:
            logger.debug(
                f"Slot '{slot.section}' runs past midnight: "
                f"{slot.start_time} - {slot.end_time}"
            )

        period_start, period_end = self._resolve_period(slot, page)
        if period_start > period_end:
            logger.warning(
                f"Slot '{slot.section}' has an empty period: "
                f"{period_start} - {period_end}"
            )
            return None

        title = slot.title or CalendarEvent.build_title(page.title, slot.section)

        return CalendarEvent(
            weekday=weekday,
            start_time=start_time,
            end_time=end_time,
            section=slot.section,
            title=title,
            period_start=period_start,
            period_end=period_end,
            notice=page.notice,
            notice_details=page.notice_details,
        )

    def _validate_required_fields(self, slot: RawSlot) -> bool:
        for field in ('day', 'start_time', 'end_time', 'section'):
            value = getattr(slot, field)
            if not value or not value.strip():
                logger.warning(f"Slot missing required field: {field}")
                return False
        return True

    def _normalize_weekday(self, day: str) -> Optional[int]:
        """
        Convert a day name (French or English) to a weekday number.

        Returns:
            0 for Sunday through 6 for Saturday, or None if unknown
        """
        return WEEKDAY_NUMBERS.get(translate_weekday(day))

    def _normalize_time(self, time_str: str) -> Optional[Tuple[int, int]]:
        """
        Normalize a time of day to an (hour, minute) pair.

        Accepts "9:30", "9 h 30", "9h", "9:30 AM" and "9 a.m." styles.

        Args:
            time_str: Time string as found on the page

        Returns:
            (hour, minute) tuple or None if parsing fails
        """
        text = time_str.strip().lower().replace('a.m.', 'am').replace('p.m.', 'pm')
        text = re.sub(r'\s*h\s*', ':', text)
        text = re.sub(r':(?=\s*[ap]m|$)', ':00', text)

        for fmt in self.TIME_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                return parsed.hour, parsed.minute
            except ValueError:
                continue

        return None

    def _resolve_period(self, slot: RawSlot, page: PlacePage) -> Tuple[date, date]:
        """
        Pick the validity period of a row.

        The row's own period wins. Schedule table rows then fall back to the
        page season. Opening hours rows, and rows without any season, are
        valid from the start of last year to the end of next year.
        """
        if slot.period_start and slot.period_end:
            return slot.period_start, slot.period_end
        if slot.title is None and page.season_from and page.season_to:
            return page.season_from, page.season_to

        year = date.today().year
        return date(year - 1, 1, 1), date(year + 1, 12, 31)
