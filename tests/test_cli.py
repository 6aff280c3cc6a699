"""Tests for the command line entry point."""

import pytest

from match_sync import __main__ as cli
from match_sync.exceptions import RateLimitExceeded
from match_sync.matching import MatchingStats


@pytest.fixture(autouse=True)
def quiet_logging(mocker):
    mocker.patch.object(cli, 'setup_logging')


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert 'usage' in capsys.readouterr().out


def test_clear_matches_requires_confirmation(mocker):
    services = mocker.patch.object(cli, '_services')

    assert cli.main(['clear-matches']) == 2
    services.assert_not_called()


def test_run_matching_prints_stats(mocker, capsys):
    services = mocker.patch.object(cli, '_services')
    services.return_value.matching.run_matching.return_value = MatchingStats(matches_created=3)

    assert cli.main(['run-matching', '--min-score', '40', '--force']) == 0

    services.return_value.matching.run_matching.assert_called_once_with(min_score=40.0, force_rematch=True)
    assert 'Matches created:      3' in capsys.readouterr().out


def test_unknown_stage_filter_is_validation_error(mocker):
    mocker.patch.object(cli, '_services')
    assert cli.main(['buyers', '--stage', 'Teleported']) == 2


def test_upstream_error_exit_code(mocker):
    services = mocker.patch.object(cli, '_services')
    services.return_value.aggregation.sync_all.side_effect = RateLimitExceeded('still limited', attempts=4)

    assert cli.main(['sync-all']) == 1


def test_buyers_have_no_state_filter(mocker):
    mocker.patch.object(cli, '_services')
    with pytest.raises(SystemExit) as exc_info:
        cli.main(['buyers', '--state', 'NC'])
    assert exc_info.value.code == 2


def test_properties_state_filter(mocker):
    services = mocker.patch.object(cli, '_services')
    page = services.return_value.aggregation.get_properties_with_matches.return_value
    page.items, page.next_cursor, page.from_cache = [], None, False

    assert cli.main(['properties', '--state', 'NC']) == 0

    filters = services.return_value.aggregation.get_properties_with_matches.call_args.args[0]
    assert filters.state == 'NC'


def test_note_command(mocker, capsys):
    services = mocker.patch.object(cli, '_services')
    services.return_value.activity.add_note.return_value.id = 'act_1'

    assert cli.main(['note', 'recM1', 'Loves the porch', '--user', 'jane']) == 0

    services.return_value.activity.add_note.assert_called_once_with('recM1', 'Loves the porch', user='jane')
    assert 'act_1' in capsys.readouterr().out


def test_verbose_flag_reaches_logging_setup():
    cli.main(['-v', 'config'])
    cli.setup_logging.assert_called_once_with(cli.config, verbose=True)
