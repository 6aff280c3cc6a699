"""Tests for the record store adapter over a mocked HTTP session."""

import json
from typing import get_type_hints

import pytest

from match_sync.exceptions import RecordStoreError
from match_sync.http_client import ResilientClient
from match_sync.models import Collection
from match_sync.record_store import RecordStoreAdapter


def make_response(mocker, status_code=200, body=None):
    response = mocker.Mock()
    response.status_code = status_code
    response.content = json.dumps(body).encode() if body is not None else b''
    response.json.return_value = body
    response.text = json.dumps(body) if body is not None else ''
    response.reason = 'Error'
    return response


@pytest.fixture
def session(mocker):
    return mocker.Mock()


@pytest.fixture
def adapter(session):
    client = ResilientClient(session, sleep=lambda s: None)
    return RecordStoreAdapter('key_test', 'appTest', client=client, fanout_pause_seconds=0)


def call_params(session, index=0):
    return session.request.call_args_list[index].kwargs['params']


class TestList:
    def test_builds_url_and_params(self, adapter, session, mocker):
        session.request.return_value = make_response(mocker, body={'records': [], 'offset': 'itr2'})

        page = adapter.list(Collection.MATCHES, filter='{A} = 1', limit=500, cursor='itr1',
                            fields=['Match Score'])

        args = session.request.call_args
        assert args.args == ('GET', 'https://api.airtable.com/v0/appTest/Property-Buyer%20Matches')
        assert args.kwargs['headers']['Authorization'] == 'Bearer key_test'
        assert call_params(session) == [
            ('filterByFormula', '{A} = 1'),
            ('pageSize', '100'),
            ('offset', 'itr1'),
            ('fields[]', 'Match Score'),
        ]
        assert page.next_cursor == 'itr2'

    def test_list_all_follows_cursor(self, adapter, session, mocker):
        session.request.side_effect = [
            make_response(mocker, body={'records': [{'id': 'rec1', 'fields': {}}], 'offset': 'next'}),
            make_response(mocker, body={'records': [{'id': 'rec2', 'fields': {}}]}),
        ]

        records = adapter.list_all(Collection.BUYERS)

        assert [r['id'] for r in records] == ['rec1', 'rec2']
        assert ('offset', 'next') in call_params(session, 1)


class TestGet:
    def test_missing_record_returns_none(self, adapter, session, mocker):
        session.request.return_value = make_response(
            mocker, 404, {'error': {'type': 'MODEL_ID_NOT_FOUND', 'message': 'Could not find record'}}
        )

        assert adapter.get(Collection.BUYERS, 'recMissing') is None

    def test_other_errors_raise_with_provider_message(self, adapter, session, mocker):
        session.request.return_value = make_response(
            mocker, 422, {'error': {'type': 'INVALID_FILTER', 'message': 'Invalid formula'}}
        )

        with pytest.raises(RecordStoreError) as exc:
            adapter.get(Collection.BUYERS, 'rec1')

        assert exc.value.status_code == 422
        assert exc.value.message == 'Invalid formula'
        assert exc.value.details['error']['type'] == 'INVALID_FILTER'


class TestBatchGet:
    def test_empty_ids_make_no_request(self, adapter, session):
        assert adapter.batch_get(Collection.PROPERTIES, []) == []
        session.request.assert_not_called()

    def test_single_filtered_request(self, adapter, session, mocker):
        session.request.return_value = make_response(mocker, body={'records': [
            {'id': 'rec1', 'fields': {}}, {'id': 'rec2', 'fields': {}},
        ]})

        records = adapter.batch_get(Collection.PROPERTIES, ['rec1', 'rec2', 'rec1'])

        assert len(records) == 2
        assert session.request.call_count == 1
        params = dict(call_params(session))
        assert params['filterByFormula'] == 'OR(RECORD_ID() = "rec1", RECORD_ID() = "rec2")'


class TestGetMany:
    def test_preserves_order_and_tolerates_missing(self, adapter, session, mocker):
        def respond(method, url, **kwargs):
            record_id = url.rsplit('/', 1)[-1]
            if record_id == 'rec2':
                return make_response(mocker, 404, {'error': 'NOT_FOUND'})
            return make_response(mocker, body={'id': record_id, 'fields': {}})

        session.request.side_effect = respond

        results = adapter.get_many(Collection.PROPERTIES, ['rec1', 'rec2', 'rec3', 'rec4'])

        assert [r['id'] if r else None for r in results] == ['rec1', None, 'rec3', 'rec4']
        assert session.request.call_count == 4


class TestWrites:
    def test_create_posts_fields(self, adapter, session, mocker):
        session.request.return_value = make_response(mocker, body={'id': 'recNew', 'fields': {'A': 1}})

        record = adapter.create(Collection.MATCHES, {'A': 1})

        assert record['id'] == 'recNew'
        assert session.request.call_args.kwargs['json'] == {'fields': {'A': 1}}

    def test_update_is_a_patch(self, adapter, session, mocker):
        session.request.return_value = make_response(mocker, body={'id': 'rec1', 'fields': {}})

        adapter.update(Collection.MATCHES, 'rec1', {'Match Stage': 'Contracts'})

        args = session.request.call_args
        assert args.args[0] == 'PATCH'
        assert args.args[1].endswith('/rec1')

    def test_delete_many_batches_of_ten(self, adapter, session, mocker):
        session.request.return_value = make_response(mocker, body={'records': []})
        ids = [f"rec{i}" for i in range(25)]

        deleted = adapter.delete_many(Collection.MATCHES, ids)

        assert deleted == 25
        assert session.request.call_count == 3
        assert [len(call_params(session, i)) for i in range(3)] == [10, 10, 5]

    def test_count_pages_through_ids(self, adapter, session, mocker):
        session.request.side_effect = [
            make_response(mocker, body={'records': [{'id': f'rec{i}'} for i in range(100)], 'offset': 'p2'}),
            make_response(mocker, body={'records': [{'id': 'rec100'}]}),
        ]

        assert adapter.count(Collection.BUYERS) == 101
        assert ('fields[]', 'Contact ID') in call_params(session)


class TestTypedHelpers:
    def test_find_buyer_by_contact_id(self, adapter, session, mocker, sample_buyer_record):
        session.request.return_value = make_response(mocker, body={'records': [sample_buyer_record]})

        buyer = adapter.find_buyer_by_contact_id('contact_123')

        assert buyer.record_id == 'rec_B1'
        assert dict(call_params(session))['filterByFormula'] == '{Contact ID} = "contact_123"'

    def test_find_property_by_code_none(self, adapter, session, mocker):
        session.request.return_value = make_response(mocker, body={'records': []})

        assert adapter.find_property_by_code('PH-404') is None


def test_type_hints_resolve_despite_list_method():
    hints = get_type_hints(RecordStoreAdapter.list_all)
    assert hints['return'] == list[dict]


def test_non_json_success_body_raises_store_error(adapter, session, mocker):
    response = make_response(mocker, 200)
    response.content = b'<html>maintenance</html>'
    response.text = '<html>maintenance</html>'
    response.json.side_effect = ValueError('Expecting value')
    session.request.return_value = response

    with pytest.raises(RecordStoreError) as exc_info:
        adapter.get(Collection.MATCHES, 'recM1')

    assert exc_info.value.status_code == 200
