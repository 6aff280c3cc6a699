"""CRM (GoHighLevel) associations and custom-objects client."""

import logging
from typing import Optional

import httpx

from .config import config
from .exceptions import CrmAPIError, UpstreamUnavailable
from .http_client import ResilientClient
from .models import CrmAssociation, CrmRecord, CrmRelation

logger = logging.getLogger(__name__)


class CrmClient:
    """REST client for the CRM relationship graph."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        location_id: Optional[str] = None,
        api_url: Optional[str] = None,
        api_version: Optional[str] = None,
        client: Optional[ResilientClient] = None,
    ):
        self.api_key = api_key or config.GHL_API_KEY
        self.location_id = location_id or config.GHL_LOCATION_ID
        self.api_url = (api_url or config.GHL_API_URL).rstrip('/')
        self.api_version = api_version or config.GHL_API_VERSION
        if client is None:
            client = ResilientClient(
                httpx.Client(),
                max_retries=config.MAX_RETRIES,
                timeout=config.REQUEST_TIMEOUT,
                name='crm',
            )
        self.client = client

    def _get_headers(self) -> dict:
        """Get request headers."""
        return {
            'Authorization': f'Bearer {self.api_key}',
            'Version': self.api_version,
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }

    def _request(self, method: str, path: str, params: dict = None, json_data: dict = None) -> dict:
        """Make a request; raises CrmAPIError on non-2xx."""
        url = f"{self.api_url}{path}"
        response = self.client.send(
            method, url, headers=self._get_headers(), params=params, json=json_data
        )

        if not 200 <= response.status_code < 300:
            try:
                details = response.json()
            except ValueError:
                details = {'message': response.text}
            message = details.get('message') if isinstance(details, dict) else None
            if isinstance(message, list):
                message = '; '.join(str(m) for m in message)
            error = CrmAPIError(response.status_code, message or 'CRM request failed', details)
            logger.error(f"CRM {method} {path} failed: {error}")
            raise error

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            error = CrmAPIError(
                response.status_code, 'CRM returned a non-JSON body', {'body': response.text[:200]}
            )
            logger.error(f"CRM {method} {path} failed: {error}")
            raise error from e

    # =========================================================================
    # ASSOCIATIONS
    # =========================================================================

    def get_associations(self) -> list[CrmAssociation]:
        """All association definitions for the location."""
        data = self._request('GET', '/associations/', params={'locationId': self.location_id})
        if isinstance(data, list):
            items = data
        else:
            items = data.get('associations') or data.get('data') or []
        return [CrmAssociation.from_api(a) for a in items if a.get('id')]

    # =========================================================================
    # RELATIONS
    # =========================================================================

    def create_relation(self, association_id: str, first_record_id: str,
                        second_record_id: str) -> CrmRelation:
        """Link two records under an association; returns the new relation."""
        data = self._request('POST', '/associations/relations', json_data={
            'locationId': self.location_id,
            'associationId': association_id,
            'firstRecordId': first_record_id,
            'secondRecordId': second_record_id,
        })
        relation = data.get('relation', data) if isinstance(data, dict) else data
        if not relation or not relation.get('id'):
            raise CrmAPIError(200, 'Relation created without an id', data)
        logger.info(f"Created CRM relation {relation['id']} ({association_id})")
        return CrmRelation.from_api(relation)

    def delete_relation(self, relation_id: str) -> None:
        self._request(
            'DELETE',
            f'/associations/relations/{relation_id}',
            params={'locationId': self.location_id},
        )
        logger.info(f"Deleted CRM relation {relation_id}")

    def list_relations(self, record_id: str) -> list[CrmRelation]:
        """Relations attached to a record."""
        data = self._request(
            'GET',
            f'/associations/relations/{record_id}',
            params={'locationId': self.location_id},
        )
        items = data.get('relations', []) if isinstance(data, dict) else data
        return [CrmRelation.from_api(r) for r in items if r.get('id')]

    def update_relation(self, object_key: str, relation_id: str, fields: dict) -> dict:
        """Update a relation's label or metadata."""
        return self._request('PUT', f'/objects/{object_key}/relations/{relation_id}', json_data=fields)

    # =========================================================================
    # CUSTOM OBJECT RECORDS
    # =========================================================================

    def search_records(
        self,
        object_key: str,
        query: Optional[str] = None,
        filters: Optional[list[dict]] = None,
        page: int = 1,
        page_limit: int = 10,
    ) -> list[CrmRecord]:
        """Search custom-object records by free-text query and/or exact filters."""
        body = {
            'locationId': self.location_id,
            'page': page,
            'pageLimit': page_limit,
        }
        if query:
            body['query'] = query
        if filters:
            body['filters'] = filters

        data = self._request('POST', f'/objects/{object_key}/records/search', json_data=body)
        return [CrmRecord.from_api(r) for r in data.get('records', []) if r.get('id')]

    def find_property_record(self, address: str, opportunity_id: str = '',
                             object_key: Optional[str] = None,
                             opportunity_field: Optional[str] = None) -> Optional[CrmRecord]:
        """
        Locate a property custom-object record.

        Searches by address first, then by exact opportunity id. A failed
        address search falls through to the opportunity id search.
        """
        object_key = object_key or config.GHL_PROPERTY_OBJECT_KEY
        opportunity_field = opportunity_field or config.GHL_OPPORTUNITY_FIELD

        if address:
            try:
                records = self.search_records(object_key, query=address)
            except (CrmAPIError, UpstreamUnavailable) as e:
                logger.warning(f"Property search by address failed: {e}")
                records = []
            if records:
                logger.debug(f"Found property record {records[0].id} by address")
                return records[0]

        if opportunity_id:
            records = self.search_records(object_key, filters=[{
                'field': opportunity_field,
                'operator': 'eq',
                'value': opportunity_id,
            }])
            if records:
                logger.debug(f"Found property record {records[0].id} by opportunity id")
                return records[0]

        logger.warning(
            f"Property not found in CRM: {address!r} (opportunity id: {opportunity_id or 'N/A'})"
        )
        return None

    def test_connection(self) -> int:
        """Number of associations visible with the configured credentials."""
        return len(self.get_associations())
