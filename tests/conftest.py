"""
pytest configuration and fixtures for match sync tests.
"""
import re
import sys
from pathlib import Path
from urllib.parse import unquote

import pytest

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from match_sync.exceptions import CrmAPIError, RecordStoreError  # noqa: E402
from match_sync.models import Collection, CrmAssociation, CrmRecord, CrmRelation  # noqa: E402
from match_sync.record_store import RecordStoreAdapter  # noqa: E402

LINKED_RE = re.compile(r'FIND\("([^"]+)", ARRAYJOIN\(\{([^}]+)\}\)\)')
RECORD_ID_RE = re.compile(r'RECORD_ID\(\) = "([^"]+)"')
EQUALS_RE = re.compile(r'\{([^}]+)\} = "([^"]*)"')
AT_LEAST_RE = re.compile(r'\{([^}]+)\} >= ([\d.]+)')


def _as_list(value):
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def formula_matches(formula, record):
    """Evaluate the formula shapes produced by match_sync.formula."""
    if not formula:
        return True
    fields = record['fields']

    linked = LINKED_RE.findall(formula)
    if linked and not any(rid in _as_list(fields.get(name)) for rid, name in linked):
        return False

    record_ids = RECORD_ID_RE.findall(formula)
    if record_ids and record['id'] not in record_ids:
        return False

    for name, value in EQUALS_RE.findall(formula):
        if str(fields.get(name, '')) != value:
            return False

    for name, value in AT_LEAST_RE.findall(formula):
        if float(fields.get(name) or 0) < float(value):
            return False

    return True


class FakeRecordStore(RecordStoreAdapter):
    """
    RecordStoreAdapter whose HTTP layer is an in-memory table set.

    Every adapter method runs for real; only ``_request`` is replaced.
    Each request is recorded in ``calls`` as (method, table, record_id).
    """

    def __init__(self, tables=None):
        super().__init__(api_key='key_test', base_id='appTest', client=object(),
                         fanout_pause_seconds=0)
        self.tables = {c: {} for c in Collection}
        for collection, records in (tables or {}).items():
            for record in records:
                self.tables[collection][record['id']] = record
        self.calls = []
        self._next_id = 1

    def add(self, collection, record_id, fields):
        self.tables[collection][record_id] = {
            'id': record_id, 'createdTime': '2026-01-01T00:00:00.000Z', 'fields': dict(fields),
        }

    def records(self, collection):
        return list(self.tables[collection].values())

    def request_count(self, method=None):
        return len([c for c in self.calls if method is None or c[0] == method])

    def _request(self, method, url, params=None, json_data=None):
        path = url[len(self.base_url) + 1:].split('/')
        collection = Collection(unquote(path[0]))
        record_id = path[1] if len(path) > 1 else None
        self.calls.append((method, collection, record_id))
        table = self.tables[collection]
        params = list(params or [])

        if method == 'GET' and record_id:
            if record_id not in table:
                raise RecordStoreError(404, 'NOT_FOUND', {'error': 'NOT_FOUND'})
            return table[record_id]

        if method == 'GET':
            options = dict(p for p in params if p[0] != 'fields[]')
            rows = [r for r in table.values() if formula_matches(options.get('filterByFormula'), r)]
            size = int(options.get('pageSize', 100))
            start = int(options.get('offset', 0))
            data = {'records': rows[start:start + size]}
            if start + size < len(rows):
                data['offset'] = str(start + size)
            return data

        if method == 'POST':
            new_id = f"recNew{self._next_id}"
            self._next_id += 1
            self.add(collection, new_id, json_data['fields'])
            return table[new_id]

        if method == 'PATCH':
            if record_id not in table:
                raise RecordStoreError(404, 'NOT_FOUND', {'error': 'NOT_FOUND'})
            table[record_id]['fields'].update(json_data['fields'])
            return table[record_id]

        if method == 'DELETE' and record_id:
            table.pop(record_id, None)
            return {'id': record_id, 'deleted': True}

        if method == 'DELETE':
            ids = [v for k, v in params if k == 'records[]']
            for rid in ids:
                table.pop(rid, None)
            return {'records': [{'id': rid, 'deleted': True} for rid in ids]}

        raise AssertionError(f"Unexpected request {method} {url}")


class FakeCrm:
    """In-memory CRM exposing the CrmClient methods the engine uses."""

    def __init__(self, associations=None, records=None):
        self.associations = associations or []
        self.records = records or []
        self.relations = {}
        self.deleted = []
        self.fail_delete = False
        self.fail_create = False
        self.association_calls = 0
        self._next_id = 1

    def get_associations(self):
        self.association_calls += 1
        return list(self.associations)

    def create_relation(self, association_id, first_record_id, second_record_id):
        if self.fail_create:
            raise CrmAPIError(422, 'Relation rejected')
        relation = CrmRelation(
            id=f"rel_{self._next_id}",
            association_id=association_id,
            first_record_id=first_record_id,
            second_record_id=second_record_id,
        )
        self._next_id += 1
        self.relations[relation.id] = relation
        return relation

    def delete_relation(self, relation_id):
        if self.fail_delete:
            raise CrmAPIError(500, 'Delete failed')
        self.relations.pop(relation_id, None)
        self.deleted.append(relation_id)

    def find_property_record(self, address, opportunity_id=''):
        for record in self.records:
            props = record.properties
            if address and props.get('address') == address:
                return record
            if opportunity_id and props.get('opportunity_id') == opportunity_id:
                return record
        return None


# =========================================================================
# SAMPLE RECORDS
# =========================================================================

@pytest.fixture
def sample_buyer_record():
    """Buyer record as returned by the record store."""
    return {
        'id': 'rec_B1',
        'createdTime': '2026-01-01T00:00:00.000Z',
        'fields': {
            'Contact ID': 'contact_123',
            'First Name': 'John',
            'Last Name': 'Doe',
            'Email': 'john.doe@example.com',
            'Downpayment': 30000,
            'No. of Bedrooms': 3,
            'No. of Bath': 2,
            'City': 'Asheville',
            'Preferred Zip Codes': '28801, 28803',
        },
    }


@pytest.fixture
def sample_property_record():
    """Property record as returned by the record store."""
    return {
        'id': 'rec_P1',
        'createdTime': '2026-01-01T00:00:00.000Z',
        'fields': {
            'Property Code': 'PH-001',
            'Opportunity ID': 'opp_001',
            'Address': '123 Main St',
            'City': 'Asheville',
            'State': 'NC',
            'Zip Code': '28805',
            'Property Total Price': 200000,
            'Beds': 4,
            'Baths': 1,
        },
    }


@pytest.fixture
def store(sample_buyer_record, sample_property_record):
    """Fake store holding one buyer and one property."""
    return FakeRecordStore({
        Collection.BUYERS: [sample_buyer_record],
        Collection.PROPERTIES: [sample_property_record],
    })


@pytest.fixture
def associations():
    return [
        CrmAssociation(id='assoc_sent', key='sent_to_buyer', name='Sent to Buyer'),
        CrmAssociation(id='assoc_responded', key='buyer_responded', name='Buyer Responded'),
    ]


@pytest.fixture
def crm(associations):
    """Fake CRM that knows the sample property by address."""
    return FakeCrm(
        associations=associations,
        records=[CrmRecord(id='crm_prop_1', object_key='custom_objects.properties',
                           properties={'address': '123 Main St', 'opportunity_id': 'opp_001'})],
    )


@pytest.fixture
def audit_log():
    """Collects audit calls instead of writing sqlite."""
    entries = []

    def record(**kwargs):
        entries.append(kwargs)

    record.entries = entries
    return record


@pytest.fixture
def env_vars(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("AIRTABLE_API_KEY", "key_test")
    monkeypatch.setenv("AIRTABLE_BASE_ID", "appTest")
    monkeypatch.delenv("GHL_API_KEY", raising=False)
    monkeypatch.delenv("GHL_LOCATION_ID", raising=False)
    monkeypatch.delenv("MATCH_SYNC_CACHE_DIR", raising=False)
    monkeypatch.delenv("MATCH_SYNC_STAGE_ASSOCIATIONS", raising=False)
