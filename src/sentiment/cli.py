"""
Sentiment CLI
=============

Inspect and administer rating sentiment thresholds.

Usage:
    python -m src.sentiment.cli classify --criterion enjoyment --score 0.92 --count 120
    python -m src.sentiment.cli classify --criterion enjoyment --positive 40 --negative 3 --db
    python -m src.sentiment.cli thresholds [--criterion writing] [--db]
    python -m src.sentiment.cli book 42 [--json]
    python -m src.sentiment.cli seed
"""

import argparse
import json
import logging
import sys

from src.api import db
from src.config import configure_logging, get_settings
from src.sentiment.aggregator import SentimentAggregator
from src.sentiment.rating_service import RatingSentimentService
from src.sentiment.sentiment_models import CriterionCounts
from src.sentiment.threshold_repository import ThresholdRepository
from src.sentiment.thresholds import ThresholdSet

logger = logging.getLogger(__name__)


def _load_thresholds(use_db: bool) -> ThresholdSet:
    if not use_db:
        return ThresholdSet.defaults()
    with db.get_connection() as conn:
        return ThresholdRepository(conn).load_threshold_set()


def cmd_classify(args) -> int:
    aggregator = SentimentAggregator(_load_thresholds(args.db))

    if args.positive is not None or args.negative is not None:
        counts = CriterionCounts(args.criterion, args.positive or 0, args.negative or 0)
        result = aggregator.evaluate(counts)
        print(json.dumps(result.to_dict(), indent=2))
        return 0

    if args.score is None or args.count is None:
        print("classify needs --score and --count, or --positive/--negative", file=sys.stderr)
        return 1

    level = aggregator.classify(args.criterion, args.score, args.count)
    print(level.value)
    return 0


def cmd_thresholds(args) -> int:
    thresholds = _load_thresholds(args.db)
    criteria = [args.criterion] if args.criterion else thresholds.criteria()

    for criterion in criteria:
        rows = thresholds.rows_for(criterion)
        if not rows:
            print(f"{criterion}: no valid thresholds")
            continue
        print(f"\n{criterion}")
        print("-" * 60)
        for i, row in enumerate(rows):
            # the top band includes its upper bound
            close = "]" if i == len(rows) - 1 else ")"
            print(
                f"  {row.sentiment_level.value:<25} "
                f"[{row.rating_min:+.2f}, {row.rating_max:+.2f}{close}  >= {row.required_count}"
            )
    return 0


def cmd_book(args) -> int:
    with db.get_connection() as conn:
        results = RatingSentimentService(conn).for_book(args.book_id)

    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
        return 0

    for result in results:
        score = "n/a" if result.score is None else f"{result.score:+.2f}"
        print(f"{result.criterion_name:<15} {result.sentiment.value:<25} score={score} n={result.total}")
    return 0


def cmd_seed(args) -> int:
    with db.get_connection() as conn:
        inserted = ThresholdRepository(conn).seed_defaults()
    print(f"Inserted {inserted} threshold rows")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Shelfsignal rating sentiment",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    classify_parser = subparsers.add_parser("classify", help="Classify one criterion")
    classify_parser.add_argument("--criterion", default="enjoyment", help="Criterion name")
    classify_parser.add_argument("--score", type=float, help="Net score in [-1, 1]")
    classify_parser.add_argument("--count", type=int, help="Number of ratings")
    classify_parser.add_argument("--positive", type=int, help="Thumbs-up count")
    classify_parser.add_argument("--negative", type=int, help="Thumbs-down count")
    classify_parser.add_argument("--db", action="store_true", help="Use stored thresholds instead of defaults")

    thresholds_parser = subparsers.add_parser("thresholds", help="Show threshold bands")
    thresholds_parser.add_argument("--criterion", help="Only this criterion")
    thresholds_parser.add_argument("--db", action="store_true", help="Use stored thresholds instead of defaults")

    book_parser = subparsers.add_parser("book", help="Sentiment for one book")
    book_parser.add_argument("book_id", type=int)
    book_parser.add_argument("--json", action="store_true", help="Output as JSON")

    subparsers.add_parser("seed", help="Insert default thresholds for unseeded criteria")

    args = parser.parse_args()
    configure_logging(get_settings().logging, verbose=args.verbose)

    if args.command is None:
        parser.print_help()
        return 1

    commands = {
        "classify": cmd_classify,
        "thresholds": cmd_thresholds,
        "book": cmd_book,
        "seed": cmd_seed,
    }
    try:
        return commands[args.command](args)
    except ConnectionError as e:
        logger.error(f"Database unavailable: {e}")
        return 1
    finally:
        db.close_pool()


if __name__ == "__main__":
    sys.exit(main())
