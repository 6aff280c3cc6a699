"""CLI for the match sync module.

Usage:
    python -m match_sync config                         Show current config
    python -m match_sync test                           Test API connections
    python -m match_sync run-matching [--min-score N] [--force]
    python -m match_sync run-buyer CONTACT_ID           Match one buyer
    python -m match_sync run-property PROPERTY_CODE     Match one property
    python -m match_sync buyers [--city X] [--search X] Buyers with their matches
    python -m match_sync properties [--state X]         Properties with their matches
    python -m match_sync buyer-matches CONTACT_ID       Property codes matched to a buyer
    python -m match_sync status                         Cache staleness
    python -m match_sync sync-all                       Refresh every cached page
    python -m match_sync clear-matches --yes            Delete every match
    python -m match_sync advance MATCH_ID               Move a match to its next stage
    python -m match_sync set-stage MATCH_ID STAGE       Move a match to a given stage
    python -m match_sync note MATCH_ID TEXT [--user X]  Add a note to a match
    python -m match_sync edit-note MATCH_ID NOTE_ID TEXT
    python -m match_sync delete-note MATCH_ID NOTE_ID
    python -m match_sync history MATCH_ID               Activity log of a match
"""

import argparse
import logging
import sys

from .config import config
from .exceptions import DataValidationError, MatchSyncError
from .models import Stage
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)


def _services():
    from .services import build_services
    return build_services(config)


def cmd_config(args) -> int:
    """Show current configuration."""
    def mask(value: str) -> str:
        return f"{value[:6]}..." if value else '(not set)'

    print("=== Match Sync Configuration ===\n")
    print(f"Record store base:  {config.AIRTABLE_BASE_ID or '(not set)'}")
    print(f"Record store key:   {mask(config.AIRTABLE_API_KEY)}")
    print(f"CRM location:       {config.GHL_LOCATION_ID or '(not set)'}")
    print(f"CRM key:            {mask(config.GHL_API_KEY)}")
    print(f"Property object:    {config.GHL_PROPERTY_OBJECT_KEY}")
    print(f"Stage mapping file: {config.STAGE_ASSOCIATIONS_FILE or '(none)'}")
    print(f"Cache:              {config.CACHE_DIR or 'in-memory'}")
    print(f"Audit DB:           {config.DB_PATH}")

    errors = config.validate()
    if errors:
        print("\nConfiguration errors:")
        for e in errors:
            print(f"  - {e}")
        return 2
    return 0


def cmd_test(args) -> int:
    """Test API connections."""
    from .models import Collection

    services = _services()
    print("Record store:")
    try:
        page = services.store.list(Collection.BUYERS, limit=1)
        print(f"  Connected (found {len(page.records)} buyer(s) on first page)")
    except MatchSyncError as e:
        print(f"  ERROR: {e}")
        return 1

    print("\nCRM:")
    if services.crm is None:
        print("  Not configured (stage sync disabled)")
        return 0
    try:
        count = services.crm.test_connection()
        print(f"  Connected ({count} associations)")
    except MatchSyncError as e:
        print(f"  ERROR: {e}")
        return 1

    print("\nAll connections successful!")
    return 0


def _print_stats(stats) -> None:
    print(f"Buyers processed:     {stats.buyers_processed}")
    print(f"Properties processed: {stats.properties_processed}")
    print(f"Matches created:      {stats.matches_created}")
    print(f"Matches updated:      {stats.matches_updated}")
    print(f"Duplicates skipped:   {stats.duplicates_skipped}")
    print(f"In preferred ZIP:     {stats.within_radius}")


def cmd_run_matching(args) -> int:
    stats = _services().matching.run_matching(min_score=args.min_score, force_rematch=args.force)
    _print_stats(stats)
    return 0


def cmd_run_buyer(args) -> int:
    stats = _services().matching.run_for_buyer(
        args.contact_id, min_score=args.min_score, force_rematch=args.force
    )
    _print_stats(stats)
    return 0


def cmd_run_property(args) -> int:
    stats = _services().matching.run_for_property(
        args.property_code, min_score=args.min_score, force_rematch=args.force
    )
    _print_stats(stats)
    return 0


def _filters(args):
    from .aggregation import AggregateFilters

    try:
        stage = Stage.parse(args.stage)
    except ValueError as e:
        raise DataValidationError(str(e)) from e
    return AggregateFilters(
        city=args.city, state=getattr(args, 'state', None), search=args.search,
        min_score=args.min_score, stage=stage,
    )


def _print_page(page, label_key: str) -> None:
    source = 'cache' if page.from_cache else 'live'
    print(f"{len(page.items)} {page.kind} ({source}, fetched {page.fetched_at})\n")
    for item in page.items:
        print(f"  {item.get(label_key) or item['recordId']}: {item['totalMatches']} matches")
        for match in item['matches']:
            other = match.get('property') or match.get('buyer') or {}
            name = other.get('address') or other.get('email') or other.get('recordId') or '?'
            stage = match.get('stage') or '-'
            print(f"      {match['score']:>5.0f}  {stage:<20} {name}")
    if page.next_cursor:
        print(f"\nNext page: --cursor {page.next_cursor}")


def cmd_buyers(args) -> int:
    page = _services().aggregation.get_buyers_with_matches(
        _filters(args), page_size=args.page_size, cursor=args.cursor
    )
    _print_page(page, 'email')
    return 0


def cmd_properties(args) -> int:
    page = _services().aggregation.get_properties_with_matches(
        _filters(args), page_size=args.page_size, cursor=args.cursor
    )
    _print_page(page, 'address')
    return 0


def cmd_buyer_matches(args) -> int:
    result = _services().aggregation.get_buyer_matches(args.contact_id)
    if result is None:
        print(f"No buyer with contact id {args.contact_id}")
        return 1
    print(f"{result.buyer.name or args.contact_id}: {len(result.matches)} matches")
    for code in result.property_codes:
        print(f"  - {code}")
    return 0


def cmd_status(args) -> int:
    status = _services().aggregation.status()
    print("=== Match Sync Status ===\n")
    print(f"Last synced:     {status.last_synced or 'never'}")
    print(f"Stale:           {'yes' if status.is_stale else 'no'}")
    print(f"New buyers:      {status.new_buyers_available}")
    print(f"New properties:  {status.new_properties_available}")
    for name, count in status.counts.items():
        print(f"  {name}: {count}")

    from .crm_audit import recent_writes
    writes = recent_writes(limit=5, db_path=config.DB_PATH)
    if writes:
        print("\nRecent CRM writes:")
        for w in writes:
            mark = "✓" if w['success'] else "✗"
            print(f"  {mark} {w['occurred_at']}: {w['operation']} {w['relation_id'] or ''}")
    return 0


def cmd_sync_all(args) -> int:
    status = _services().aggregation.sync_all()
    print(f"Synced {status.pages_refreshed} pages at {status.last_synced}: {status.counts}")
    return 0


def cmd_clear_matches(args) -> int:
    if not args.yes:
        print("Refusing to delete every match without --yes")
        return 2
    deleted = _services().matching.clear_matches()
    print(f"Deleted {deleted} matches")
    return 0


def _print_transition(result) -> None:
    stage = result.match.stage.value if result.match.stage else '-'
    print(f"Match {result.match.id} is now in: {stage}")
    print(f"CRM sync: {result.outcome.value}{f' ({result.detail})' if result.detail else ''}")
    if result.relation_id:
        print(f"Relation: {result.relation_id}")
    if result.orphaned_relation_id:
        print(f"WARNING: previous relation {result.orphaned_relation_id} could not be deleted")


def cmd_advance(args) -> int:
    result = _services().stage_sync.advance(args.match_id)
    _print_transition(result)
    return 0


def cmd_set_stage(args) -> int:
    result = _services().stage_sync.transition(args.match_id, None, args.stage)
    _print_transition(result)
    return 0


def cmd_note(args) -> int:
    activity = _services().activity.add_note(args.match_id, args.text, user=args.user)
    print(f"Added note {activity.id} to match {args.match_id}")
    return 0


def cmd_edit_note(args) -> int:
    _services().activity.edit_note(args.match_id, args.note_id, args.text)
    print(f"Updated note {args.note_id}")
    return 0


def cmd_delete_note(args) -> int:
    _services().activity.delete_note(args.match_id, args.note_id)
    print(f"Deleted note {args.note_id}")
    return 0


def cmd_history(args) -> int:
    match = _services().store.get_match(args.match_id)
    if match is None:
        raise DataValidationError(f"Match not found: {args.match_id}")
    stage = match.stage.value if match.stage else '-'
    print(f"Match {match.id} ({stage}): {len(match.activities)} activities\n")
    for activity in match.activities:
        user = f" [{activity.user}]" if activity.user else ''
        print(f"  {activity.timestamp}  {activity.type:<18} {activity.details}{user}")
        print(f"      id: {activity.id}")
    return 0


def _add_match_args(p) -> None:
    p.add_argument('--min-score', type=float, default=None, help='Minimum score (default 30)')
    p.add_argument('--force', action='store_true', help='Rescore existing matches in place')


def _add_filter_args(p, state: bool = True) -> None:
    p.add_argument('--city')
    if state:
        p.add_argument('--state')
    p.add_argument('--search')
    p.add_argument('--min-score', type=float, default=None)
    p.add_argument('--stage')
    p.add_argument('--page-size', type=int, default=config.DEFAULT_PAGE_SIZE)
    p.add_argument('--cursor')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='match_sync',
        description='Match Sync - buyer/property matching with CRM stage sync',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    subparsers.add_parser('config', help='Show current config')
    subparsers.add_parser('test', help='Test API connections')
    subparsers.add_parser('status', help='Show cache staleness')
    subparsers.add_parser('sync-all', help='Refresh every cached page')

    _add_match_args(subparsers.add_parser('run-matching', help='Match all buyers and properties'))

    run_buyer = subparsers.add_parser('run-buyer', help='Match one buyer')
    run_buyer.add_argument('contact_id', help='CRM contact id')
    _add_match_args(run_buyer)

    run_property = subparsers.add_parser('run-property', help='Match one property')
    run_property.add_argument('property_code', help='Property code')
    _add_match_args(run_property)

    _add_filter_args(subparsers.add_parser('buyers', help='Buyers with their matches'), state=False)
    _add_filter_args(subparsers.add_parser('properties', help='Properties with their matches'))

    buyer_matches = subparsers.add_parser('buyer-matches', help='Property codes matched to a buyer')
    buyer_matches.add_argument('contact_id', help='CRM contact id')

    clear = subparsers.add_parser('clear-matches', help='Delete every match')
    clear.add_argument('--yes', action='store_true', help='Confirm deletion')

    advance = subparsers.add_parser('advance', help='Move a match to its next stage')
    advance.add_argument('match_id')

    set_stage = subparsers.add_parser('set-stage', help='Move a match to a given stage')
    set_stage.add_argument('match_id')
    set_stage.add_argument('stage', help='Stage name, e.g. "Showing Scheduled"')

    note = subparsers.add_parser('note', help='Add a note to a match')
    note.add_argument('match_id')
    note.add_argument('text')
    note.add_argument('--user')

    edit_note = subparsers.add_parser('edit-note', help='Change the text of a note')
    edit_note.add_argument('match_id')
    edit_note.add_argument('note_id')
    edit_note.add_argument('text')

    delete_note = subparsers.add_parser('delete-note', help='Remove a note')
    delete_note.add_argument('match_id')
    delete_note.add_argument('note_id')

    history = subparsers.add_parser('history', help='Show the activity log of a match')
    history.add_argument('match_id')

    return parser


COMMANDS = {
    'config': cmd_config,
    'test': cmd_test,
    'run-matching': cmd_run_matching,
    'run-buyer': cmd_run_buyer,
    'run-property': cmd_run_property,
    'buyers': cmd_buyers,
    'properties': cmd_properties,
    'buyer-matches': cmd_buyer_matches,
    'status': cmd_status,
    'sync-all': cmd_sync_all,
    'clear-matches': cmd_clear_matches,
    'advance': cmd_advance,
    'set-stage': cmd_set_stage,
    'note': cmd_note,
    'edit-note': cmd_edit_note,
    'delete-note': cmd_delete_note,
    'history': cmd_history,
}


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(config, verbose=args.verbose)

    try:
        return COMMANDS[args.command](args)
    except DataValidationError as e:
        logger.error(str(e))
        print(f"ERROR: {e}")
        return 2
    except MatchSyncError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"ERROR: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
