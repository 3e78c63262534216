"""Local JSON file storage for reconciled event lists."""
import json
import logging
import os
import tempfile

from processor.event_list import CalendarEventList

logger = logging.getLogger(__name__)


def decode_event_list(content: bytes, source: str) -> CalendarEventList:
    """
    Decode persisted JSON into an event list.

    Missing, empty or malformed content yields an empty list so that a first
    run or a damaged file never blocks a pass.

    Args:
        content: UTF-8 encoded JSON, possibly empty
        source: File path or object key, for logging

    Returns:
        CalendarEventList
    """
    try:
        text = content.decode('utf-8')
        if not text.strip():
            logger.info(f"No stored events in {source}")
            return CalendarEventList()

        records = json.loads(text)
        if not isinstance(records, list):
            raise ValueError(f"expected a list, got {type(records).__name__}")
        events = CalendarEventList.from_list(records)
    except (ValueError, TypeError) as e:
        # UnicodeDecodeError and JSONDecodeError are ValueErrors
        logger.warning(f"Ignoring malformed stored events in {source}: {e}")
        return CalendarEventList()

    logger.info(f"Loaded {len(events)} stored events from {source}")
    return events


def encode_event_list(events: CalendarEventList) -> str:
    return json.dumps(events.to_list(), indent=2, ensure_ascii=False) + '\n'


class FileEventStore:
    """Store keeping one JSON file per place and language."""

    def __init__(self, data_dir: str = 'data'):
        """
        Initialize the file store.

        Args:
            data_dir: Directory holding the JSON files
        """
        self.data_dir = data_dir

    def path_for(self, place: str, language: str) -> str:
        return os.path.join(self.data_dir, f"{place}.{language}.json")

    def load(self, place: str, language: str) -> CalendarEventList:
        """
        Load the stored events of a place.

        Args:
            place: Place slug
            language: Page language

        Returns:
            CalendarEventList, empty if nothing usable is stored
        """
        path = self.path_for(place, language)
        if not os.path.exists(path):
            logger.info(f"No stored events file at {path}")
            return CalendarEventList()

        with open(path, 'rb') as handle:
            content = handle.read()

        return decode_event_list(content, path)

    def save(self, place: str, language: str, events: CalendarEventList) -> str:
        """
        Overwrite the stored events of a place.

        The file is replaced atomically once the new content is complete.

        Args:
            place: Place slug
            language: Page language
            events: Reconciled events

        Returns:
            Path of the written file
        """
        path = self.path_for(place, language)
        content = encode_event_list(events)

        directory = os.path.dirname(path) or '.'
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f".{place}.", suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                handle.write(content)
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        logger.info(f"Saved {len(events)} events to {path}")
        return path
