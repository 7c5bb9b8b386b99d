"""
CLI Interface
Eco-score recalculation command line interface.

Usage:
    python -m recalc --status
    python -m recalc --mode filtered --confidence low --has-ref yes
    python -m recalc --mode low-confidence
    python -m recalc --mode never --concurrency 8
    python -m recalc --mode single --id acc-42
    python -m recalc --init-defaults
"""
import argparse
import logging
import sys
from pathlib import Path

from ecotrust.config import DB_PATH, LOG_LEVEL, RECALC_MAX_CONCURRENCY
from ecotrust.database import TrustDB
from ecotrust.errors import EcoTrustError
from ecotrust.stores import ScoreMetadataStore

from .modes.filtered import recalculate_filtered_mode
from .modes.single import recalculate_single_mode
from .modes.defaults import initialize_defaults_mode


def print_status(db_path: str):
    """Print score statistics."""
    print(f"[*] Database Status: {db_path}")
    print("=" * 50)

    try:
        with TrustDB(db_path) as db:
            stats = ScoreMetadataStore(db).get_statistics()
    except EcoTrustError as e:
        print(f"[ERROR] {e}")
        sys.exit(1)

    total = stats['total']

    def line(label, count):
        pct = count / total * 100 if total > 0 else 0
        print(f"  {label:22} {count:5} ({pct:5.1f}%)")

    print(f"\nTotal listings: {total}")

    print(f"\nBy Confidence:")
    for band in ('high', 'medium', 'low'):
        line(band, stats['by_confidence'][band])

    print(f"\nProvenance:")
    line('with external ref', stats['with_external_ref'])
    line('without external ref', stats['without_external_ref'])

    print(f"\nProcessing:")
    line('never calculated', stats['never_calculated'])
    line('default scores', stats['defaults'])
    line('last run failed', stats['with_error'])


def build_criteria(args) -> dict:
    """Filter dict from CLI flags; 'all' means no constraint."""
    return {
        'confidence': args.confidence,
        'has_external_ref': args.has_ref,
        'last_calculated': args.last_calculated,
    }


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='recalc',
        description='Eco-Score Recalculation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m recalc --status                          # Show score statistics
  python -m recalc --mode filtered --confidence low  # Re-score low-confidence listings
  python -m recalc --mode never --has-ref yes        # Score listings never processed
  python -m recalc --mode single --id acc-42         # Re-score one listing
  python -m recalc --init-defaults                   # Placeholder scores for new listings

Modes:
  filtered        - every listing matching the filter flags
  low-confidence  - confidence < 3, within the filter flags
  never           - never calculated, within the filter flags
  single          - one listing (--id)
        """
    )

    # Mode selection
    parser.add_argument(
        '--mode', '-m',
        choices=['filtered', 'low-confidence', 'never', 'single'],
        help='Recalculation mode'
    )

    # Status
    parser.add_argument(
        '--status', '-s',
        action='store_true',
        help='Show database statistics'
    )

    parser.add_argument(
        '--init-defaults',
        action='store_true',
        help='Write default scores to never-calculated listings'
    )

    # Filters
    parser.add_argument(
        '--confidence',
        choices=['all', 'low', 'medium', 'high'],
        default='all',
        help='Confidence band (low <= 2, medium = 3, high >= 4)'
    )

    parser.add_argument(
        '--has-ref',
        choices=['all', 'yes', 'no'],
        default='all',
        help='Has external place reference'
    )

    parser.add_argument(
        '--last-calculated',
        default='all',
        help='all, never, week, month or a number of days'
    )

    # Options
    parser.add_argument(
        '--id',
        help='Listing id (for --mode single)'
    )

    parser.add_argument(
        '--concurrency', '-c',
        type=int,
        help=f'Parallel oracle calls (max {RECALC_MAX_CONCURRENCY})'
    )

    parser.add_argument(
        '--db',
        default=DB_PATH,
        help=f'Path to database (default: {DB_PATH})'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output'
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else LOG_LEVEL,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # Check database exists
    db_path = Path(args.db)
    if not db_path.exists():
        print(f"[ERROR] Database not found: {db_path}")
        sys.exit(1)

    # Handle --status
    if args.status:
        print_status(str(db_path))
        return

    if args.init_defaults:
        try:
            initialize_defaults_mode(str(db_path), verbose=args.verbose)
        except EcoTrustError as e:
            print(f"[ERROR] {e}")
            sys.exit(1)
        return

    # Require --mode
    if not args.mode:
        parser.print_help()
        print("\n[ERROR] --mode is required (or use --status / --init-defaults)")
        sys.exit(1)

    if args.mode == 'single' and not args.id:
        print("[ERROR] --mode single requires --id")
        sys.exit(1)

    # Run selected mode
    try:
        if args.mode == 'single':
            report = recalculate_single_mode(
                db_path=str(db_path),
                listing_id=args.id,
                verbose=args.verbose,
            )
        else:
            report = recalculate_filtered_mode(
                db_path=str(db_path),
                criteria=build_criteria(args),
                mode=args.mode,
                concurrency=args.concurrency,
                verbose=args.verbose,
            )
    except (EcoTrustError, ValueError) as e:
        # Rejected before any listing was attempted
        print(f"[ERROR] {e}")
        sys.exit(1)

    # Exit code
    if report.failed > 0:
        sys.exit(1)


if __name__ == '__main__':
    main()
