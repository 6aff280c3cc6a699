"""Tests for typed models and the record store translation boundary."""

import json

import pytest

from match_sync.models import (
    Buyer,
    Match,
    MatchActivity,
    MatchNote,
    activity_fields,
    Property,
    Stage,
    is_forward_transition,
    new_match_fields,
    next_stage,
    relation_fields,
    stage_fields,
)


class TestStage:
    def test_parse_by_value_or_name(self):
        assert Stage.parse('Sent to Buyer') is Stage.SENT_TO_BUYER
        assert Stage.parse('closed deal / won') is Stage.CLOSED_WON
        assert Stage.parse('NOT_INTERESTED') is Stage.NOT_INTERESTED

    def test_parse_empty_is_initial(self):
        assert Stage.parse(None) is None
        assert Stage.parse('') is None

    def test_parse_unknown_raises(self):
        with pytest.raises(ValueError):
            Stage.parse('Teleported')

    def test_next_stage(self):
        assert next_stage(None) is Stage.SENT_TO_BUYER
        assert next_stage(Stage.SENT_TO_BUYER) is Stage.BUYER_RESPONDED
        assert next_stage(Stage.CLOSED_WON) is None
        assert next_stage(Stage.NOT_INTERESTED) is None

    def test_forward_transition(self):
        assert is_forward_transition(Stage.SENT_TO_BUYER, Stage.CONTRACTS)
        assert not is_forward_transition(Stage.CONTRACTS, Stage.SENT_TO_BUYER)
        assert is_forward_transition(Stage.CONTRACTS, Stage.NOT_INTERESTED)
        assert not is_forward_transition(Stage.NOT_INTERESTED, Stage.SENT_TO_BUYER)


class TestBuyerProperty:
    def test_buyer_from_api(self, sample_buyer_record):
        buyer = Buyer.from_api(sample_buyer_record)
        assert buyer.contact_id == 'contact_123'
        assert buyer.name == 'John Doe'
        assert buyer.preferred_zip_codes == ['28801', '28803']
        assert buyer.desired_beds == 3.0

    def test_property_price_fallback(self):
        prop = Property.from_api({'id': 'rec1', 'fields': {'Price': '150000'}})
        assert prop.price == 150000.0

    def test_display_code_falls_back_to_opportunity(self):
        prop = Property.from_api({'id': 'rec1', 'fields': {'Opportunity ID': 'opp_9'}})
        assert prop.display_code == 'opp_9'


class TestMatch:
    def test_from_api(self):
        activity = MatchActivity.stage_change(None, Stage.SENT_TO_BUYER)
        match = Match.from_api({
            'id': 'recM1',
            'createdTime': '2026-01-01T00:00:00.000Z',
            'fields': {
                'Contact ID': ['rec_B1'],
                'Property Code': ['rec_P1'],
                'Match Score': 45,
                'Match Stage': 'Sent to Buyer',
                'GHL Relation ID': 'rel_1',
                'Activities': json.dumps([activity.to_dict()]),
            },
        })

        assert match.pair == ('rec_B1', 'rec_P1')
        assert match.stage is Stage.SENT_TO_BUYER
        assert match.relation_id == 'rel_1'
        assert match.activities[0].metadata['toStage'] == 'Sent to Buyer'

    def test_bad_activity_json_and_unknown_stage_are_tolerated(self):
        match = Match.from_api({'id': 'recM1', 'fields': {
            'Activities': '{broken', 'Match Stage': 'Mystery', 'GHL Relation ID': '',
        }})
        assert match.activities == []
        assert match.stage is None
        assert match.relation_id is None

    def test_notes_field_parsed(self):
        match = Match.from_api({'id': 'recM1', 'fields': {
            'Notes': json.dumps([
                {'id': 'act_1', 'text': 'Call Monday', 'timestamp': 't', 'user': 'jane'},
            ]),
        }})
        notes = [(n.id, n.text, n.user) for n in match.note_entries]
        assert notes == [('act_1', 'Call Monday', 'jane')]
        assert match.to_dict()['noteEntries'][0]['text'] == 'Call Monday'


class TestFieldBuilders:
    def test_new_match_fields_link_records(self):
        fields = new_match_fields('rec_B1', 'rec_P1', 45, 'notes', False)
        assert fields['Contact ID'] == ['rec_B1']
        assert fields['Property Code'] == ['rec_P1']
        assert 'Match Stage' not in fields

    def test_stage_fields_serialise_activities(self):
        activity = MatchActivity.stage_change(Stage.SENT_TO_BUYER, Stage.BUYER_RESPONDED)
        fields = stage_fields(Stage.BUYER_RESPONDED, [activity])
        assert fields['Match Stage'] == 'Buyer Responded'
        assert json.loads(fields['Activities'])[0]['type'] == 'stage-change'

    def test_relation_fields_clear(self):
        assert relation_fields(None) == {'GHL Relation ID': ''}
        assert relation_fields('rel_1') == {'GHL Relation ID': 'rel_1'}

    def test_activity_fields_with_notes(self):
        activity = MatchActivity.create('note-added', details='Call Monday', user='jane')
        fields = activity_fields([activity], [MatchNote.from_activity(activity)])

        assert json.loads(fields['Activities'])[0]['user'] == 'jane'
        assert json.loads(fields['Notes']) == [{
            'id': activity.id, 'text': 'Call Monday', 'timestamp': activity.timestamp, 'user': 'jane',
        }]
        assert 'Notes' not in activity_fields([activity])
