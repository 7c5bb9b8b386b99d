"""
CLI Interface
Moderation command line interface.

Usage:
    python -m moderation --status
    python -m moderation apply rev-7 flag
    python -m moderation apply itin-3 hide --reason "duplicate listing" --actor admin-1
    python -m moderation history itin-3
"""
import argparse
import logging
import sys
from pathlib import Path

from ecotrust.clock import SystemClock
from ecotrust.config import DB_PATH, LOG_LEVEL, SYSTEM_ACTOR
from ecotrust.database import TrustDB
from ecotrust.errors import EcoTrustError
from ecotrust.stores import ModerationStore

from .projection import display_status
from .state_machine import ModerationStateMachine


def print_status(store: ModerationStore):
    """Print entity counts by type and state."""
    stats = store.get_statistics()
    print(f"[*] Moderation Status")
    print("=" * 50)
    if not stats:
        print("\nNo moderated entities")
        return
    for entity_type, by_state in sorted(stats.items()):
        total = sum(by_state.values())
        print(f"\n{entity_type} ({total}):")
        for state, count in sorted(by_state.items(), key=lambda x: -x[1]):
            print(f"  {state:15} {count:5}")


def print_history(store: ModerationStore, entity_id: str):
    entity, version = store.get(entity_id)
    now = SystemClock().now()
    print(f"[*] {entity.entity_type} {entity.id}")
    print(f"   State: {entity.state} (shown as {display_status(entity, now)}), version {version}")
    if not entity.audit_trail:
        print("\n   No moderation actions yet")
        return
    print()
    for entry in entity.audit_trail:
        when = entry.timestamp.strftime('%Y-%m-%d %H:%M') if entry.timestamp else '?'
        line = f"   {when}  {entry.action:8} {entry.from_state} -> {entry.to_state}  by {entry.actor_id}"
        if entry.reason:
            line += f"  ({entry.reason})"
        print(line)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='moderation',
        description='Review and itinerary moderation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Actions:
  review     approve | flag | reject (reason required)
  itinerary  approve | flag | hide | delete (reason required except approve)
        """
    )
    parser.add_argument('--status', '-s', action='store_true', help='Show counts by type and state')
    parser.add_argument('--db', default=DB_PATH, help=f'Path to database (default: {DB_PATH})')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')

    sub = parser.add_subparsers(dest='command')

    apply_parser = sub.add_parser('apply', help='Apply an admin action')
    apply_parser.add_argument('entity_id')
    apply_parser.add_argument('action')
    apply_parser.add_argument('--reason', '-r', help='Reason (required for reject/flag/hide/delete where applicable)')
    apply_parser.add_argument('--actor', default=SYSTEM_ACTOR, help=f'Acting admin id (default: {SYSTEM_ACTOR})')

    history_parser = sub.add_parser('history', help='Show audit trail')
    history_parser.add_argument('entity_id')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else LOG_LEVEL,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    db_path = Path(args.db)
    if not db_path.exists():
        print(f"[ERROR] Database not found: {db_path}")
        sys.exit(1)

    if not args.status and not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        with TrustDB(str(db_path)) as db:
            store = ModerationStore(db)

            if args.status:
                print_status(store)
            elif args.command == 'history':
                print_history(store, args.entity_id)
            elif args.command == 'apply':
                machine = ModerationStateMachine(store)
                entity = machine.apply(args.entity_id, args.action, reason=args.reason, actor_id=args.actor)
                print(f"[OK] {entity.entity_type} {entity.id}: {entity.state}")
    except EcoTrustError as e:
        print(f"[ERROR] {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
