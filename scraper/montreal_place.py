"""Schedule scraper for montreal.ca place pages."""
import logging
import re
import time
import unicodedata
from datetime import date
from typing import List, Optional, Tuple

import requests
from bs4 import BeautifulSoup

from processor.models import PlacePage, RawSlot

logger = logging.getLogger(__name__)

MONTHS = {
    'january': 1, 'february': 2, 'march': 3, 'april': 4, 'may': 5, 'june': 6,
    'july': 7, 'august': 8, 'september': 9, 'october': 10, 'november': 11,
    'december': 12,
    'janvier': 1, 'fevrier': 2, 'mars': 3, 'avril': 4, 'mai': 5, 'juin': 6,
    'juillet': 7, 'aout': 8, 'septembre': 9, 'octobre': 10, 'novembre': 11,
    'decembre': 12,
}

PERIOD_PATTERN = re.compile(r'^(?:from|du)\s+(.+?)\s+(?:to|au)\s+(.+)$', re.IGNORECASE)
DAY_PATTERN = re.compile(r'^(\d{1,2})(?:er|st|nd|rd|th)?(?:\s+([^\d\s]+))?(?:\s+(\d{4}))?$', re.IGNORECASE)

OPENING_HOURS_TITLES = ("Heures d'ouverture", "Opening hours")
DEFAULT_SCHEDULE_LABELS = ('Horaire', 'Schedule')
ADDRESS_LABELS = ('Address', 'Adresse')


def _month_number(name: str) -> Optional[int]:
    """
    Look up a month by English or French name, accents and case ignored.

    Unambiguous prefixes such as "feb." or "sept" are accepted.
    """
    key = unicodedata.normalize('NFKD', name).encode('ascii', 'ignore').decode()
    key = key.lower().rstrip('.')
    if key in MONTHS:
        return MONTHS[key]
    if len(key) < 3:
        return None
    candidates = {number for month, number in MONTHS.items() if month.startswith(key)}
    if len(candidates) == 1:
        return candidates.pop()
    return None


def parse_period(text: str) -> Tuple[Optional[date], Optional[date]]:
    """
    Parse a schedule period such as "From 1 to 14 February 2025".

    The start may omit its month and year, which are then taken from the end
    ("Du 20 décembre au 5 janvier 2025" starts in December 2024).

    Args:
        text: Period line as displayed on the page

    Returns:
        (start, end) dates, or (None, None) if the text is not a period
    """
    match = PERIOD_PATTERN.match(' '.join(text.split()))
    if not match:
        return None, None

    start_match = DAY_PATTERN.match(match.group(1).strip())
    end_match = DAY_PATTERN.match(match.group(2).strip())
    if not start_match or not end_match:
        return None, None
    if not end_match.group(2) or not end_match.group(3):
        return None, None

    end_month = _month_number(end_match.group(2))
    if end_month is None:
        return None, None

    start_month = _month_number(start_match.group(2)) if start_match.group(2) else end_month
    if start_month is None:
        return None, None

    end_year = int(end_match.group(3))
    try:
        end = date(end_year, end_month, int(end_match.group(1)))
        if start_match.group(3):
            start = date(int(start_match.group(3)), start_month, int(start_match.group(1)))
        else:
            start = date(end_year, start_month, int(start_match.group(1)))
            if start > end:
                start = start.replace(year=end_year - 1)
    except ValueError:
        return None, None

    return start, end


class MontrealPlaceScraper:
    """Scraper for the opening hours of a montreal.ca place."""

    BASE_URL = "https://montreal.ca"

    def __init__(self, timeout: int = 30):
        """
        Initialize the place scraper.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.timeout = timeout

    def place_url(self, place: str, language: str = 'fr') -> str:
        if language.lower() == 'en':
            return f"{self.BASE_URL}/en/places/{place.lower()}"
        return f"{self.BASE_URL}/lieux/{place.lower()}"

    def fetch_place(self, place: str, language: str = 'fr') -> PlacePage:
        """
        Fetch and parse the schedule of a place.

        Args:
            place: Place slug, e.g. "piscine-quintal"
            language: Page language, "fr" or "en" (default: "fr")

        Returns:
            PlacePage with the raw schedule rows
        """
        url = self.place_url(place, language)
        logger.info(f"Fetching schedule for {place} ({language})")

        html_content = self._fetch_html(url)
        page = self._parse_page(html_content, place.lower(), language.lower(), url)

        logger.info(f"Successfully scraped {len(page.slots)} slots for {place}")
        return page

    def _fetch_html(self, url: str) -> str:
        """
        Fetch page HTML with retry logic.

        Args:
            url: Page URL

        Returns:
            HTML content as string

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        max_retries = 3
        base_delay = 1  # seconds

        for attempt in range(max_retries):
            try:
                logger.info(f"Fetching {url} (attempt {attempt + 1}/{max_retries})")
                response = requests.get(url, timeout=self.timeout)
                response.raise_for_status()
                return response.text

            except requests.RequestException as e:
                if attempt < max_retries - 1:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise

    def _parse_page(self, html_content: str, place: str, language: str, url: str) -> PlacePage:
        soup = BeautifulSoup(html_content, 'html.parser')
        contents = soup.select_one('div.content-modules')
        if contents is None:
            raise ValueError(f"No schedule contents found at {url}")

        title_elem = contents.find('h2')
        season_from, season_to = self._parse_season(contents)
        notice, notice_details = self._parse_notice(soup)

        page = PlacePage(
            place=place,
            language=language,
            url=url,
            title=title_elem.get_text(strip=True) if title_elem else place,
            season_from=season_from,
            season_to=season_to,
            notice=notice,
            notice_details=notice_details,
            place_name=self._meta_content(soup, property='og:title'),
            author=self._meta_content(soup, name='author'),
            address=self._parse_address(soup),
            image=self._meta_content(soup, property='og:image'),
        )

        page.slots = self._parse_schedule_tables(contents)
        if not page.slots:
            logger.info(f"No schedule table for {place}, reading opening hours")
            page.slots = self._parse_opening_hours(soup)

        return page

    def _meta_content(self, soup: BeautifulSoup, **attrs) -> Optional[str]:
        meta = soup.find('meta', attrs=attrs)
        return meta.get('content') if meta else None

    def _parse_season(self, contents) -> Tuple[Optional[date], Optional[date]]:
        """Read the first two <time datetime="..."> values as the season bounds."""
        dates = []
        for time_elem in contents.find_all('time', attrs={'datetime': True})[:2]:
            try:
                dates.append(date.fromisoformat(time_elem['datetime'][:10]))
            except ValueError:
                logger.warning(f"Invalid season date: {time_elem['datetime']}")
                return None, None

        if len(dates) < 2:
            return None, None
        return dates[0], dates[1]

    def _parse_notice(self, soup: BeautifulSoup) -> Tuple[Optional[str], Optional[str]]:
        message_bar = soup.select_one('div.alert div.message-bar-container')
        if message_bar is None:
            return None, None

        heading = message_bar.select_one('div.message-bar-heading')
        details = message_bar.find('p')
        return (
            heading.get_text(strip=True) if heading else None,
            details.get_text(strip=True) if details else None,
        )

    def _parse_address(self, soup: BeautifulSoup) -> Optional[str]:
        for item in soup.select('div.list-item-icon-content'):
            label = item.select_one('div.list-item-icon-label')
            if label is None or label.get_text(strip=True) not in ADDRESS_LABELS:
                continue
            divs = item.find_all('div')
            if len(divs) < 2:
                return None
            return ', '.join(divs[1].stripped_strings)
        return None

    def _parse_hours(self, container) -> Tuple[Optional[str], Optional[str]]:
        hours = [span.get_text(strip=True) for span in container.find_all('span')]
        hours = [hour for hour in hours if hour]
        if len(hours) < 2:
            return None, None
        return hours[0], hours[1]

    def _parse_schedule_tables(self, contents) -> List[RawSlot]:
        """
        Parse the main schedule tables, one per section.

        Args:
            contents: The div.content-modules element

        Returns:
            List of RawSlot objects
        """
        slots = []

        for section in contents.select('div.wrapper-body div.content-module-stacked'):
            header = section.find('h3')
            body = section.find('tbody')
            if header is None or body is None:
                continue
            section_header = header.get_text(strip=True)

            for row in body.find_all('tr'):
                cells = row.find_all('td')
                if len(cells) < 2:
                    continue

                start_time, end_time = self._parse_hours(cells[1])
                if not start_time:
                    logger.debug(f"Skipping row without hours in '{section_header}'")
                    continue

                slots.append(RawSlot(
                    day=cells[0].get_text(strip=True),
                    start_time=start_time,
                    end_time=end_time,
                    section=section_header,
                ))

        return slots

    def _parse_opening_hours(self, soup: BeautifulSoup) -> List[RawSlot]:
        """
        Parse the sidebar opening hours block.

        Each schedule of the block becomes a group: the regular schedule is
        the "default" group, the others carry their own period.

        Args:
            soup: Parsed page

        Returns:
            List of RawSlot objects
        """
        block = None
        block_title = None
        for candidate in soup.select('div.sidebar section.sb-block'):
            title_elem = candidate.select_one('h2.sidebar-title')
            if title_elem and title_elem.get_text(strip=True) in OPENING_HOURS_TITLES:
                block = candidate
                block_title = title_elem.get_text(strip=True)
                break

        if block is None:
            return []

        slots = []
        for schedule in block.select('div.list-item-icon-content'):
            label_elem = schedule.select_one('div.list-item-icon-label')
            if label_elem is None:
                continue
            label = label_elem.get_text(strip=True)

            period_start = period_end = None
            divs = schedule.find_all('div')
            if len(divs) > 1:
                period_start, period_end = parse_period(divs[1].get_text(' ', strip=True))

            if label in DEFAULT_SCHEDULE_LABELS:
                group = 'default'
                title = block_title
            else:
                group = f"{label} {period_start} {period_end}" if period_start else label
                title = f"{block_title} ({label})"

            for row in schedule.select('ul.list-unstyled li.row'):
                day_elem = row.select_one('span.schedule-day')
                data_elem = row.select_one('div.schedule-data')
                if day_elem is None or data_elem is None:
                    continue

                start_time, end_time = self._parse_hours(data_elem)
                if not start_time:
                    continue

                slots.append(RawSlot(
                    day=day_elem.get_text(strip=True),
                    start_time=start_time,
                    end_time=end_time,
                    section=label,
                    group=group,
                    title=title,
                    period_start=period_start,
                    period_end=period_end,
                ))

        return slots
