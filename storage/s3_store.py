"""S3 storage for reconciled event lists."""
import logging

import boto3
from botocore.exceptions import ClientError

from processor.event_list import CalendarEventList
from storage.file_store import decode_event_list, encode_event_list

logger = logging.getLogger(__name__)


class S3EventStore:
    """Store keeping one JSON object per place and language in an S3 bucket."""

    MISSING_KEY_CODES = ('NoSuchKey', '404')

    def __init__(self, bucket_name: str, key_prefix: str = 'data/'):
        """
        Initialize S3 client and bucket reference.

        Args:
            bucket_name: Name of the S3 bucket
            key_prefix: Prefix prepended to every object key
        """
        self.bucket_name = bucket_name
        self.key_prefix = key_prefix
        self.s3 = boto3.client('s3')
        logger.info(f"Initialized S3EventStore for bucket: {bucket_name}")

    def key_for(self, place: str, language: str) -> str:
        return f"{self.key_prefix}{place}.{language}.json"

    def load(self, place: str, language: str) -> CalendarEventList:
        """
        Load the stored events of a place.

        Args:
            place: Place slug
            language: Page language

        Returns:
            CalendarEventList, empty if nothing usable is stored

        Raises:
            ClientError: On S3 errors other than a missing object
        """
        key = self.key_for(place, language)

        try:
            response = self.s3.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in self.MISSING_KEY_CODES:
                logger.info(f"No stored events object at s3://{self.bucket_name}/{key}")
                return CalendarEventList()
            logger.error(f"Error reading s3://{self.bucket_name}/{key}: {e}")
            raise

        content = response['Body'].read()
        return decode_event_list(content, f"s3://{self.bucket_name}/{key}")

    def save(self, place: str, language: str, events: CalendarEventList) -> str:
        """
        Overwrite the stored events of a place.

        Args:
            place: Place slug
            language: Page language
            events: Reconciled events

        Returns:
            Object key that was written
        """
        key = self.key_for(place, language)
        content = encode_event_list(events)

        try:
            self.s3.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=content.encode('utf-8'),
                ContentType='application/json'
            )
        except ClientError as e:
            logger.error(f"Error writing s3://{self.bucket_name}/{key}: {e}")
            raise

        logger.info(f"Saved {len(events)} events to s3://{self.bucket_name}/{key}")
        return key
