"""Tests for match scoring."""

from match_sync.models import Buyer, Property
from match_sync.scorer import extract_zip, generate_match_score, in_preferred_zip


def make_buyer(**kwargs):
    return Buyer(record_id='rec_B1', **kwargs)


def make_property(**kwargs):
    return Property(record_id='rec_P1', **kwargs)


def test_perfect_match_in_preferred_zip():
    buyer = make_buyer(desired_beds=3, desired_baths=2, down_payment=50000, preferred_zip_codes=['28801'])
    prop = make_property(zip_code='28801', beds=3, baths=2, price=200000)

    score = generate_match_score(buyer, prop)

    assert score.score == 100
    assert score.is_priority
    assert score.reasoning.startswith('[PRIORITY] Excellent Match')
    assert 'In preferred ZIP code' in score.highlights


def test_partial_match_outside_zip(sample_buyer_record, sample_property_record):
    buyer = Buyer.from_api(sample_buyer_record)
    prop = Property.from_api(sample_property_record)

    score = generate_match_score(buyer, prop)

    assert (score.location_score, score.beds_score, score.baths_score, score.budget_score) == (10, 15, 5, 15)
    assert score.score == 45
    assert not score.is_priority
    assert 'Not in preferred ZIP codes' in score.concerns
    assert score.reasoning.startswith('Fair Match')


def test_no_preferences_get_neutral_scores():
    score = generate_match_score(make_buyer(), make_property())

    assert (score.location_score, score.beds_score, score.baths_score, score.budget_score) == (20, 12, 8, 10)
    assert score.score == 50


def test_more_beds_and_low_down_payment():
    buyer = make_buyer(desired_beds=2, down_payment=10000)
    prop = make_property(beds=5, price=500000)

    score = generate_match_score(buyer, prop)

    assert score.beds_score == 10
    assert score.budget_score == 5
    assert any('Low down payment' in c for c in score.concerns)


def test_zip_falls_back_to_address():
    prop = make_property(address='9 Oak Ave, Asheville, NC 28803')
    assert extract_zip(prop.address) == '28803'
    assert in_preferred_zip(prop, ['28803'])
    assert not in_preferred_zip(prop, [])


def test_breakdown_text():
    score = generate_match_score(make_buyer(), make_property())
    assert 'ZIP Code: 20/40' in score.breakdown()
