"""Record store (Airtable) adapter.

Typed CRUD over the Buyers, Properties and Property-Buyer Matches tables.
All HTTP goes through ResilientClient, so 429s are retried here and nowhere
else; create/update are never retried beyond that.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional
from urllib.parse import quote

import requests

from . import formula
from .exceptions import RecordStoreError
from .http_client import ResilientClient
from .models import (
    BUYER_FIELDS,
    PROPERTY_FIELDS,
    Buyer,
    Collection,
    Match,
    Property,
    RecordPage,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

# One cheap field per table, used when only record ids are needed
ID_ONLY_FIELDS = {
    Collection.BUYERS: 'Contact ID',
    Collection.PROPERTIES: 'Property Code',
    Collection.MATCHES: 'Match Score',
}


def _error_from_response(response) -> RecordStoreError:
    """Build a RecordStoreError from the provider's error body."""
    details = None
    message = getattr(response, 'reason', '') or getattr(response, 'reason_phrase', '') or ''
    try:
        details = response.json()
    except ValueError:
        details = {'message': response.text}

    if isinstance(details, dict):
        error = details.get('error')
        if isinstance(error, dict):
            message = error.get('message') or error.get('type') or message
        elif isinstance(error, str):
            message = details.get('message') or error
        elif details.get('message'):
            message = details['message']

    return RecordStoreError(response.status_code, message or 'Record store error', details)


class RecordStoreAdapter:
    """HTTP adapter for the record store."""

    def __init__(
        self,
        api_key: str,
        base_id: str,
        api_url: str = 'https://api.airtable.com/v0',
        client: Optional[ResilientClient] = None,
        fanout_batch_size: int = 3,
        fanout_pause_seconds: float = 0.15,
        delete_batch_size: int = 10,
    ):
        self.base_url = f"{api_url.rstrip('/')}/{base_id}"
        self.headers = {
            'Authorization': f'Bearer {api_key}',
            'Content-Type': 'application/json',
        }
        if client is None:
            client = ResilientClient(requests.Session(), name='airtable')
        self.client = client
        self.fanout_batch_size = fanout_batch_size
        self.fanout_pause_seconds = fanout_pause_seconds
        self.delete_batch_size = delete_batch_size

    def _table_url(self, collection: Collection, record_id: Optional[str] = None) -> str:
        url = f"{self.base_url}/{quote(collection.value, safe='')}"
        if record_id:
            url = f"{url}/{record_id}"
        return url

    def _request(self, method: str, url: str, params=None, json_data=None) -> dict:
        response = self.client.send(method, url, headers=self.headers, params=params, json=json_data)
        if not 200 <= response.status_code < 300:
            error = _error_from_response(response)
            logger.error(f"Record store {method} {url} failed: {error}")
            raise error
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            error = RecordStoreError(
                response.status_code, 'Record store returned a non-JSON body', {'body': response.text[:200]}
            )
            logger.error(f"Record store {method} {url} failed: {error}")
            raise error from e

    # =========================================================================
    # GENERIC OPERATIONS
    # =========================================================================

    def list(
        self,
        collection: Collection,
        filter: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        fields: Optional[Iterable[str]] = None,
    ) -> RecordPage:
        """Fetch one page of records."""
        params = []
        if filter:
            params.append(('filterByFormula', filter))
        if limit:
            params.append(('pageSize', str(min(int(limit), MAX_PAGE_SIZE))))
        if cursor:
            params.append(('offset', cursor))
        for name in fields or []:
            params.append(('fields[]', name))

        data = self._request('GET', self._table_url(collection), params=params)
        records = data.get('records', [])
        logger.debug(f"Listed {len(records)} records from {collection.value}")
        return RecordPage(records=records, next_cursor=data.get('offset') or None)

    def list_all(
        self,
        collection: Collection,
        filter: Optional[str] = None,
        fields: Optional[Iterable[str]] = None,
    ) -> list[dict]:
        """Fetch every record matching the filter, following cursors."""
        fields = list(fields) if fields else None
        all_records: list[dict] = []
        cursor = None
        while True:
            page = self.list(collection, filter=filter, limit=MAX_PAGE_SIZE, cursor=cursor, fields=fields)
            all_records.extend(page.records)
            cursor = page.next_cursor
            if not cursor:
                break
        return all_records

    def get(self, collection: Collection, record_id: str) -> Optional[dict]:
        """Fetch a single record; None if it does not exist."""
        try:
            return self._request('GET', self._table_url(collection, record_id))
        except RecordStoreError as e:
            if e.status_code == 404:
                return None
            raise

    def batch_get(self, collection: Collection, record_ids: Iterable[str]) -> list[dict]:
        """Fetch many records by id with one filtered list call."""
        ids = list(dict.fromkeys(rid for rid in record_ids if rid))
        if not ids:
            return []
        logger.debug(f"Batch fetching {len(ids)} records from {collection.value}")
        return self.list_all(collection, filter=formula.record_id_in(ids))

    def get_many(self, collection: Collection, record_ids: Iterable[str]) -> list[Optional[dict]]:
        """
        Fetch records one by one, a few at a time in parallel.

        Requests go out in batches of ``fanout_batch_size`` with a short pause
        between batches to stay under the provider's rate limit. Failed or
        missing records come back as None, in input order.
        """
        ids = list(record_ids)
        results: list[Optional[dict]] = []

        def fetch(record_id: str) -> Optional[dict]:
            try:
                return self.get(collection, record_id)
            except Exception as e:
                logger.warning(f"Failed to fetch {collection.value}/{record_id}: {e}")
                return None

        with ThreadPoolExecutor(max_workers=self.fanout_batch_size) as executor:
            for start in range(0, len(ids), self.fanout_batch_size):
                batch = ids[start:start + self.fanout_batch_size]
                results.extend(executor.map(fetch, batch))
                if start + self.fanout_batch_size < len(ids):
                    time.sleep(self.fanout_pause_seconds)

        return results

    def create(self, collection: Collection, fields: dict) -> dict:
        """Create a record and return it."""
        record = self._request('POST', self._table_url(collection), json_data={'fields': fields})
        logger.info(f"Created {collection.value} record {record.get('id')}")
        return record

    def update(self, collection: Collection, record_id: str, fields: dict) -> dict:
        """Partial update (PATCH) of a record."""
        record = self._request(
            'PATCH', self._table_url(collection, record_id), json_data={'fields': fields}
        )
        logger.debug(f"Updated {collection.value}/{record_id}: {sorted(fields)}")
        return record

    def delete(self, collection: Collection, record_id: str) -> None:
        self._request('DELETE', self._table_url(collection, record_id))
        logger.info(f"Deleted {collection.value}/{record_id}")

    def delete_many(self, collection: Collection, record_ids: Iterable[str]) -> int:
        """Delete records in provider-sized batches; returns the count deleted."""
        ids = list(record_ids)
        deleted = 0
        for start in range(0, len(ids), self.delete_batch_size):
            batch = ids[start:start + self.delete_batch_size]
            params = [('records[]', rid) for rid in batch]
            self._request('DELETE', self._table_url(collection), params=params)
            deleted += len(batch)
            logger.info(f"Deleted {deleted}/{len(ids)} {collection.value} records")
        return deleted

    def list_ids(self, collection: Collection, filter: Optional[str] = None) -> list[str]:
        records = self.list_all(collection, filter=filter, fields=[ID_ONLY_FIELDS[collection]])
        return [r['id'] for r in records]

    def count(self, collection: Collection) -> int:
        """Total records in a table (the store has no count endpoint)."""
        return len(self.list_ids(collection))

    # =========================================================================
    # TYPED HELPERS
    # =========================================================================

    def list_buyers(self, filter: Optional[str] = None) -> list[Buyer]:
        return [Buyer.from_api(r) for r in self.list_all(Collection.BUYERS, filter=filter)]

    def list_properties(self, filter: Optional[str] = None) -> list[Property]:
        return [Property.from_api(r) for r in self.list_all(Collection.PROPERTIES, filter=filter)]

    def list_matches(self, filter: Optional[str] = None) -> list[Match]:
        return [Match.from_api(r) for r in self.list_all(Collection.MATCHES, filter=filter)]

    def get_buyer(self, record_id: str) -> Optional[Buyer]:
        data = self.get(Collection.BUYERS, record_id)
        return Buyer.from_api(data) if data else None

    def get_property(self, record_id: str) -> Optional[Property]:
        data = self.get(Collection.PROPERTIES, record_id)
        return Property.from_api(data) if data else None

    def get_match(self, record_id: str) -> Optional[Match]:
        data = self.get(Collection.MATCHES, record_id)
        return Match.from_api(data) if data else None

    def find_buyer_by_contact_id(self, contact_id: str) -> Optional[Buyer]:
        page = self.list(
            Collection.BUYERS,
            filter=formula.field_equals(BUYER_FIELDS['contact_id'], contact_id),
            limit=1,
        )
        return Buyer.from_api(page.records[0]) if page.records else None

    def find_property_by_code(self, property_code: str) -> Optional[Property]:
        page = self.list(
            Collection.PROPERTIES,
            filter=formula.field_equals(PROPERTY_FIELDS['property_code'], property_code),
            limit=1,
        )
        return Property.from_api(page.records[0]) if page.records else None

    def create_match(self, fields: dict) -> Match:
        return Match.from_api(self.create(Collection.MATCHES, fields))

    def update_match(self, match_id: str, fields: dict) -> Match:
        return Match.from_api(self.update(Collection.MATCHES, match_id, fields))
