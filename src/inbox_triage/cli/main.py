"""
Command-line interface for operating the inbox triage pipeline.

Usage:
    # Create the database tables
    inbox-triage init-db

    # Classify items now (several ids run as a bounded-concurrency batch)
    inbox-triage classify ITEM_ID [ITEM_ID ...] --model ollama/qwen2.5:7b

    # Cron jobs
    inbox-triage retry-due
    inbox-triage auto-archive

    # Run the API server
    inbox-triage serve
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

import structlog

from inbox_triage.classification.batch import BatchClassifier
from inbox_triage.classification.engine import ClassificationEngine
from inbox_triage.classification.provider import create_provider_from_model_string
from inbox_triage.classification.schemas import ClassificationResult
from inbox_triage.config import settings
from inbox_triage.db.database import Database, get_database
from inbox_triage.errors import InboxTriageError
from inbox_triage.inbox.sweeps import run_auto_archive_for_all_users
from inbox_triage.logging_config import setup_logging


# Setup logging
setup_logging()
logger = structlog.get_logger(__name__)


# ============================================================================
# CLI FUNCTIONS
# ============================================================================

def build_engine(db: Database, model_override: Optional[str] = None) -> ClassificationEngine:
    provider = create_provider_from_model_string(model_override) if model_override else None
    return ClassificationEngine(db, provider=provider)


def classify_items(db: Database, item_ids: List[str], model_override: Optional[str] = None) -> List[dict]:
    """
    Classify the given items synchronously.

    Returns:
        One record per item: {"item_id", "success", "result" | "error"}
    """
    engine = build_engine(db, model_override)
    batch = BatchClassifier(engine).classify_items(item_ids)

    records = []
    for item_id in item_ids:
        outcome = batch.results.get(item_id)
        if isinstance(outcome, ClassificationResult):
            records.append({"item_id": item_id, "success": True, "result": outcome.model_dump(mode="json")})
        else:
            records.append({"item_id": item_id, "success": False, "error": outcome})

    logger.info("cli_classification_completed", succeeded=batch.succeeded, failed=batch.failed)
    return records


def write_output(records: List[dict], output_path: Optional[Path], format: str = "jsonl") -> None:
    """
    Write records to a file, or to stdout when no path is given.

    Args:
        records: JSON-serializable records
        output_path: Output file path
        format: Output format ("json" or "jsonl")
    """
    if not output_path:
        if format == "jsonl":
            for record in records:
                print(json.dumps(record, ensure_ascii=False))
        else:
            print(json.dumps(records, ensure_ascii=False, indent=2))
        return

    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        if format == "jsonl":
            for record in records:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
        else:
            json.dump(records, f, ensure_ascii=False, indent=2)

    logger.info("output_written", path=str(output_path), count=len(records))


def cmd_init_db(args: argparse.Namespace, db: Database) -> int:
    db.create_all()
    print("Database tables created", file=sys.stderr)
    return 0


def cmd_classify(args: argparse.Namespace, db: Database) -> int:
    records = classify_items(db, args.item_ids, model_override=args.model)

    output_path = Path(args.output) if args.output else None
    format = "json" if output_path and output_path.suffix == ".json" else args.format
    write_output(records, output_path, format)

    return 0 if all(r["success"] for r in records) else 1


def cmd_retry_due(args: argparse.Namespace, db: Database) -> int:
    engine = build_engine(db, args.model)
    count = engine.process_due_retries(limit=args.limit)
    print(f"Retried {count} items", file=sys.stderr)
    return 0


def cmd_auto_archive(args: argparse.Namespace, db: Database) -> int:
    totals = run_auto_archive_for_all_users(db)
    print(f"Warned {totals.warned} items, archived {totals.archived} items", file=sys.stderr)
    return 0


def cmd_serve(args: argparse.Namespace, db: Database) -> int:
    from inbox_triage.api.app import main as serve

    serve()
    return 0


# ============================================================================
# MAIN CLI
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inbox-triage",
        description="Inbox triage CLI - classification, retries and archive sweeps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s init-db
  %(prog)s classify 3f1c... 9b2e... --output results.jsonl
  %(prog)s classify 3f1c... --model ollama/qwen2.5:7b
  %(prog)s retry-due --limit 50
  %(prog)s auto-archive
        """
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help=f"Database URL (default: DATABASE_URL or {settings.database_url})"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables").set_defaults(handler=cmd_init_db)

    classify = subparsers.add_parser("classify", help="Classify inbox items now")
    classify.add_argument("item_ids", nargs="+", help="Inbox item ids")
    classify.add_argument(
        "--model",
        "-m",
        type=str,
        default=None,
        help="Override LLM model (format: provider/model-name, e.g., 'ollama/qwen2.5:7b')"
    )
    classify.add_argument("--output", "-o", type=str, default=None, help="Output file path (default: stdout)")
    classify.add_argument(
        "--format",
        "-f",
        type=str,
        choices=["json", "jsonl"],
        default="jsonl",
        help="Output format (default: jsonl)"
    )
    classify.set_defaults(handler=cmd_classify)

    retry_due = subparsers.add_parser("retry-due", help="Classify items whose scheduled retry is due")
    retry_due.add_argument("--limit", type=int, default=100, help="Maximum items per run (default: 100)")
    retry_due.add_argument("--model", "-m", type=str, default=None, help="Override LLM model")
    retry_due.set_defaults(handler=cmd_retry_due)

    subparsers.add_parser(
        "auto-archive", help="Run the auto-archive sweep for every user"
    ).set_defaults(handler=cmd_auto_archive)

    subparsers.add_parser("serve", help="Run the API server").set_defaults(handler=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    db = Database(args.database_url) if args.database_url else get_database()

    try:
        return args.handler(args, db)

    except (InboxTriageError, ValueError) as e:
        logger.error("cli_failed", command=args.command, error=str(e), exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
