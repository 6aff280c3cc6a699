"""Tests for duplicate-match prevention."""

from match_sync.dedup import DedupAction, DedupGuard, build_skip_set, should_create
from match_sync.models import Match


def make_match(match_id, buyer, prop):
    return Match(id=match_id, buyer_record_id=buyer, property_record_id=prop)


def test_build_skip_set_ignores_incomplete_links():
    matches = [make_match('m1', 'b1', 'p1'), make_match('m2', 'b1', ''), make_match('m3', 'b2', 'p1')]
    assert build_skip_set(matches) == {('b1', 'p1'), ('b2', 'p1')}


def test_should_create_false_for_existing_even_when_forced():
    skip = {('b1', 'p1')}
    assert should_create(('b1', 'p1'), skip) is False
    assert should_create(('b1', 'p1'), skip, force_rematch=True) is False
    assert should_create(('b1', 'p2'), skip) is True


def test_decide():
    guard = DedupGuard([make_match('m1', 'b1', 'p1')])

    assert guard.decide(('b1', 'p1')) is DedupAction.SKIP
    assert guard.decide(('b1', 'p1'), force_rematch=True) is DedupAction.UPDATE
    assert guard.decide(('b2', 'p1')) is DedupAction.CREATE
    assert guard.match_id_for(('b1', 'p1')) == 'm1'


def test_remember_prevents_second_create_in_same_run():
    guard = DedupGuard([])
    assert guard.should_create(('b1', 'p1'))

    guard.remember(('b1', 'p1'), 'recNew1')

    assert ('b1', 'p1') in guard
    assert not guard.should_create(('b1', 'p1'))
    assert guard.decide(('b1', 'p1'), force_rematch=True) is DedupAction.UPDATE


def test_duplicate_existing_pairs_keep_first_id():
    guard = DedupGuard([make_match('m1', 'b1', 'p1'), make_match('m2', 'b1', 'p1')])
    assert len(guard) == 1
    assert guard.match_id_for(('b1', 'p1')) == 'm1'
