"""Command-line entry point.

Usage:
  ledger-engine transactions.csv > accounts.csv
  ledger-engine transactions.csv --format jsonl --env production
"""

import argparse
import sys
from typing import IO, List, Optional

import structlog

from config import configure_logging, get_settings, get_settings_for_environment
from emitters import get_emitter
from errors import RecordSourceError
from services import get_ledger_engine, process_records
from sources import CsvRecordSource

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger-engine",
        description="Fold a transaction CSV into per-client account balances.",
    )
    parser.add_argument("path", help="CSV file with a type,client,tx,amount header")
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=["csv", "jsonl"],
        default=None,
        help="Snapshot format written to stdout (default: OUTPUT_FORMAT setting)",
    )
    parser.add_argument(
        "--env",
        default=None,
        help="Settings preset: development, production or testing",
    )
    return parser


def run(argv: Optional[List[str]] = None, stdout: Optional[IO[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings_for_environment(args.env) if args.env else get_settings()
    configure_logging(settings)

    try:
        emitter = get_emitter(
            args.output_format or settings.output_format,
            stdout if stdout is not None else sys.stdout,
            delimiter=settings.csv_delimiter,
        )
    except ValueError as e:
        logger.error("Invalid output format", detail=str(e))
        return 2

    engine = get_ledger_engine(settings)
    try:
        with CsvRecordSource(args.path, delimiter=settings.csv_delimiter) as source:
            process_records(source, engine)
    except RecordSourceError as e:
        logger.error("Record source failed", path=e.path, line=e.line, detail=e.detail)
        return 1

    emitter.emit(engine.snapshot())
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
