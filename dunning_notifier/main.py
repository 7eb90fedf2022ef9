"""Dunning Notifier -- Command Line Entry Point.

Runs one deployment of the dunning job:

    1. Load configuration (config.yaml or defaults) and script parameters
    2. Open the record store (transactions workbook)
    3. Pick the mail gateway (SMTP, or the .eml outbox for --dry-run)
    4. Run the job: query -> transform -> send -> completion log

Usage::

    # From the project root:
    python -m dunning_notifier.main

    # Reminders for invoices 14 days past due, written to the outbox:
    python -m dunning_notifier.main --days 14 --dry-run

    # Reproduce a past run:
    python -m dunning_notifier.main --today 2026-10-01 --workbook data/export.xlsx

Deploy once per day count (e.g. 7, 14, 30, 45) and run each once a day.
Running a deployment twice on one day sends duplicates unless the
notification ledger is enabled in config.yaml.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Optional

import yaml

from .config import DunningConfig, get_config, load_parameters, with_threshold
from .job import DunningNotifier
from .ledger import NotificationLedger
from .mailer import Mailer, OutboxMailer, SmtpMailer
from .models import RunResult
from .record_store import WorkbookRecordStore
from .template_engine import TemplateEngine

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool, log_file: str = "") -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, mode="a", encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
        force=True,
    )


def build_notifier(
    config: DunningConfig,
    *,
    workbook: str | Path | None = None,
    days: Optional[int] = None,
    dry_run: bool = False,
) -> DunningNotifier:
    """Wire the job from configuration.

    Raises:
        FileNotFoundError: the workbook, saved search or template file
            does not exist.
    """
    params = load_parameters(config)
    if days is not None:
        params = with_threshold(params, days)

    workbook_path = Path(workbook) if workbook else config.data_files.resolve(config.data_files.workbook)
    store = WorkbookRecordStore(workbook_path)
    address_book = store.address_book()

    mailer: Mailer
    if dry_run:
        outbox = config.data_files.resolve(config.data_files.outbox_dir)
        mailer = OutboxMailer(
            address_book,
            outbox,
            default_from=config.smtp.from_address or config.smtp.username,
        )
    else:
        mailer = SmtpMailer(address_book, config.smtp)

    ledger = None
    if config.ledger.enabled and params.threshold_days is None:
        logger.warning(
            "Notification ledger is enabled but no day count is set -- "
            "reminders will not be recorded"
        )
    elif config.ledger.enabled:
        ledger = NotificationLedger(config.data_files.resolve(config.ledger.db_path))

    engine = TemplateEngine(
        company=config.company,
        template_file=params.template_file or None,
    )
    return DunningNotifier(
        params,
        store,
        mailer,
        engine=engine,
        query_settings=config.query,
        ledger=ledger,
    )


def _print_outcomes(result: RunResult) -> None:
    print()
    print("=" * 65)
    print(f"  Dunning reminders -- {result.threshold_days} days past due")
    print("=" * 65)
    for outcome in result.outcomes:
        status = "sent" if outcome.sent else f"FAILED ({outcome.error_kind.value})"
        print(f"  invoice {outcome.invoice_id!s:<12} {status}")
    for invoice_id in result.already_notified:
        print(f"  invoice {invoice_id!s:<12} skipped (already reminded)")
    if not result.outcomes and not result.already_notified:
        print("  No invoices matched.")
    print(f"  Completed in {result.duration_seconds:.1f}s")
    print("=" * 65)


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point.

    Returns:
        Exit code (0 = job ran, 1 = setup error).  Failed sends do not
        change the exit code; they are in the log.
    """
    parser = argparse.ArgumentParser(
        description="Dunning Notifier - email reminders for past-due invoices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python -m dunning_notifier.main\n"
            "  python -m dunning_notifier.main --days 30 --dry-run\n"
            "  python -m dunning_notifier.main --config prod.yaml --verbose\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml (default: project root config.yaml)",
    )
    parser.add_argument(
        "--workbook",
        type=str,
        default=None,
        help="Path to the transactions workbook (overrides config)",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Days past due to remind on (overrides the script parameter)",
    )
    parser.add_argument(
        "--today",
        type=date.fromisoformat,
        default=None,
        help="Run as of this date, YYYY-MM-DD (default: today)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Write .eml files to the outbox instead of sending",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args(argv)

    try:
        config = get_config(args.config)
    except (FileNotFoundError, yaml.YAMLError) as exc:
        _configure_logging(args.verbose)
        logger.error("Could not load configuration: %s", exc)
        return 1

    log_file = config.output.log_file
    _configure_logging(args.verbose, str(config.data_files.resolve(log_file)) if log_file else "")

    try:
        notifier = build_notifier(
            config,
            workbook=args.workbook,
            days=args.days,
            dry_run=args.dry_run,
        )
        result = notifier.run(today=args.today)
    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        return 1
    except ValueError as exc:
        logger.error("Data error: %s", exc)
        return 1
    except Exception:
        logger.exception("Unexpected error in dunning job")
        return 1

    _print_outcomes(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
