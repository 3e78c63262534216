"""Batch handler for Montreal place calendar sync."""
import json
import logging
import os
import sys
import time
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Tuple, Union

from scraper.montreal_place import MontrealPlaceScraper
from processor.event_list import NoEventsFoundError
from processor.event_processor import EventProcessor
from processor.models import PlaceResult
from storage.file_store import FileEventStore
from storage.s3_store import S3EventStore


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    EXTRA_FIELDS = ('place', 'language')

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for field in self.EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def parse_places(value: str) -> List[Tuple[str, str]]:
    """
    Parse a "place:language" list such as "piscine-quintal:en,piscine-rosemont".

    Args:
        value: Comma-separated entries; the language defaults to "fr"

    Returns:
        List of (place, language) pairs
    """
    places = []
    for entry in value.split(','):
        entry = entry.strip()
        if not entry:
            continue
        place, _, language = entry.partition(':')
        places.append((place.strip().lower(), (language.strip() or 'fr').lower()))
    return places


def create_store() -> Union[FileEventStore, S3EventStore]:
    """Build the event store selected by the STORAGE_BACKEND variable."""
    backend = os.environ.get('STORAGE_BACKEND', 'file').lower()
    if backend == 's3':
        return S3EventStore(
            bucket_name=os.environ['BUCKET_NAME'],
            key_prefix=os.environ.get('KEY_PREFIX', 'data/')
        )
    if backend == 'file':
        return FileEventStore(data_dir=os.environ.get('DATA_DIR', 'data'))
    raise ValueError(f"Unknown storage backend: {backend}")


def sync_place(
    place: str,
    language: str,
    scraper: MontrealPlaceScraper,
    processor: EventProcessor,
    store: Union[FileEventStore, S3EventStore]
) -> PlaceResult:
    """
    Run one read-scrape-reconcile-write pass for a place.

    Args:
        place: Place slug
        language: Page language
        scraper: MontrealPlaceScraper
        processor: EventProcessor
        store: FileEventStore or S3EventStore

    Returns:
        PlaceResult with the pass statistics

    Raises:
        NoEventsFoundError: If the place yields no events
    """
    logger = logging.getLogger(__name__)
    context = {'place': place, 'language': language}

    events = store.load(place, language)
    for event in events:
        logger.debug(f"Stored event: {event.describe()}", extra=context)

    page = scraper.fetch_place(place, language)
    scraped = processor.process_page(page)
    if not scraped:
        raise NoEventsFoundError(f"No events found for {place} ({language})")

    sync_result = events.upsert_all(scraped)
    if not events:
        raise NoEventsFoundError(
            f"Reconciliation left no events for {place} ({language})"
        )

    for event in events:
        logger.debug(f"Final event: {event.describe()}", extra=context)

    store.save(place, language, events)

    return PlaceResult(
        place=place,
        language=language,
        scraped=len(scraped),
        stored=len(events),
        sync=sync_result
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main handler function for Montreal place calendar sync.

    Args:
        event: Invocation payload, optionally with a "places" list of
            "place:language" entries overriding the PLACES variable
        context: Lambda context object

    Returns:
        Response dict with statusCode and per-place statistics
    """
    # Read configuration from environment variables
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))

    payload_places = (event or {}).get('places')
    if payload_places:
        places = parse_places(','.join(payload_places))
    else:
        places = parse_places(os.environ.get('PLACES', ''))

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    logger.info(
        f"Sync started for {len(places)} places",
        extra={'timeout_seconds': timeout_seconds}
    )

    try:
        scraper = MontrealPlaceScraper(timeout=timeout_seconds)
        processor = EventProcessor()
        store = create_store()
    except Exception as e:
        logger.error(f"Sync setup failed: {str(e)}", exc_info=True)
        duration = time.time() - start_time
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Sync setup failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }

    results = []
    for place, language in places:
        extra = {'place': place, 'language': language}
        try:
            logger.info(f"Synchronizing {place} ({language})", extra=extra)
            result = sync_place(place, language, scraper, processor, store)
        except Exception as e:
            # One failing place must not stop the others
            logger.error(
                f"Failed to synchronize {place} ({language}): {str(e)}",
                extra=extra,
                exc_info=True
            )
            result = PlaceResult(
                place=place,
                language=language,
                error=str(e),
                error_type=type(e).__name__
            )
        results.append(result)

    failures = sum(1 for result in results if not result.succeeded)
    duration = time.time() - start_time

    logger.info(
        f"Sync completed: {len(results) - failures} succeeded, {failures} failed",
        extra={'duration_seconds': round(duration, 2)}
    )

    return {
        'statusCode': 500 if failures else 200,
        'body': json.dumps({
            'message': 'Sync completed with failures' if failures else 'Sync completed successfully',
            'places': [asdict(result) for result in results],
            'failures': failures,
            'duration_seconds': round(duration, 2)
        })
    }


def main(argv: Optional[List[str]] = None) -> int:
    """Run a sync from the command line; arguments are "place:language" entries."""
    argv = sys.argv[1:] if argv is None else argv
    response = lambda_handler({'places': argv}, None)
    body = json.loads(response['body'])
    return body.get('failures', 1)


if __name__ == '__main__':
    sys.exit(main())
