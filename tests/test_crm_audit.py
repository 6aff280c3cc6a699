"""Tests for the CRM write audit log."""

from match_sync.crm_audit import log_crm_write, recent_writes


def test_logs_and_reads_back(tmp_path):
    db_path = tmp_path / 'audit' / 'match_sync.db'

    log_crm_write('create_relation', 'associations/relations', 'POST',
                  match_id='recM1', relation_id='rel_1', db_path=db_path)
    log_crm_write('delete_relation', 'associations/relations/rel_1', 'DELETE',
                  match_id='recM1', relation_id='rel_1', success=False,
                  error_message='500: boom', db_path=db_path)

    rows = recent_writes(db_path=db_path)

    assert [r['operation'] for r in rows] == ['delete_relation', 'create_relation']
    assert rows[0]['success'] == 0
    assert rows[0]['error_message'] == '500: boom'
    assert rows[1]['relation_id'] == 'rel_1'


def test_truncates_long_summary(tmp_path):
    db_path = tmp_path / 'match_sync.db'
    log_crm_write('create_relation', 'associations/relations', 'POST',
                  payload_summary='x' * 1000, db_path=db_path)

    assert len(recent_writes(db_path=db_path)[0]['payload_summary']) == 500


def test_never_raises(tmp_path):
    # A directory where the database file should be
    db_path = tmp_path / 'is_a_dir'
    db_path.mkdir()

    log_crm_write('create_relation', 'associations/relations', 'POST', db_path=db_path)


def test_no_log_yet(tmp_path):
    assert recent_writes(db_path=tmp_path / 'missing.db') == []
