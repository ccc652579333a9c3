#!/usr/bin/env python3
"""
email_files.py
==============

Download vendor invoice attachments from Gmail into per-vendor folders.

Vendors and their destination folders come from the config file
(``app.json``); every run produces one batch with per-vendor counts and a
list of per-item errors.

Dependencies:
    pip install google-api-python-client google-auth-httplib2 google-auth-oauthlib

Examples:
---------
# last month's invoices from every configured vendor
python -m emailfiles.cli.email_files --config app.json --period last-month

# metadata-only report for one vendor, read and unread mail, no label changes
python -m emailfiles.cli.email_files --period last-quarter \
  --vendor billing@acme.com --strategy metadata-only --all-mail --no-mark-read \
  --save-json report.json --save-csv report.csv

# custom range (end date inclusive)
python -m emailfiles.cli.email_files --start-date 2024-01-01 --end-date 2024-01-31
"""

from __future__ import annotations

import argparse
import csv
import datetime as dt
import json
import logging
import sys
from typing import Dict, List, Optional

from ..adapters.filesystem import FileSystemPersistenceManager
from ..adapters.gmail import GmailEmailService, build_gmail_service
from ..config import DEFAULT_CONFIG_PATH, AppSettings, ConfigurationError, ConfigurationService
from ..domain import periods
from ..domain.models import (
    AttachmentHandlingStrategy,
    EmailFilesBatch,
    FetchOptions,
    FileNamingStrategy,
    StorageStatistics,
)
from ..domain.periods import TimePeriod
from ..usecases.fetch_email_files import EmailFilesDependencies, EmailFilesManager

REPORT_FIELDS = [
    "message_id",
    "vendor",
    "sender_name",
    "subject",
    "sent_date",
    "file_name",
    "mime_type",
    "file_size",
    "persisted",
    "storage_reference",
]


# --------------------------- Reports ---------------------------
def batch_to_rows(batch: EmailFilesBatch) -> List[Dict]:
    """One row per attachment; messages without attachments get a single empty row."""
    rows: List[Dict] = []
    for record in batch.records:
        base = {
            "message_id": record.message_id,
            "vendor": record.sender,
            "sender_name": record.sender_name,
            "subject": record.subject,
            "sent_date": record.sent_date.isoformat() if record.sent_date else "",
        }
        if not record.attachments:
            rows.append({**base, "file_name": "", "mime_type": "", "file_size": 0,
                         "persisted": False, "storage_reference": ""})
            continue
        for att in record.attachments:
            rows.append(
                {
                    **base,
                    "file_name": att.file_name,
                    "mime_type": att.mime_type,
                    "file_size": att.file_size,
                    "persisted": att.is_persisted,
                    "storage_reference": att.storage_reference or "",
                }
            )
    return rows


def batch_summary(batch: EmailFilesBatch) -> Dict:
    meta = batch.metadata
    return {
        "period": meta.period.label if meta.period else "All time",
        "total_emails": meta.total_emails,
        "total_attachments": meta.total_attachments,
        "total_size_bytes": meta.total_size_bytes,
        "processing_ms": int(meta.processing_time.total_seconds() * 1000),
        "invoices_by_vendor": dict(meta.invoices_by_vendor),
        "errors": list(batch.errors),
        "success": batch.is_success,
    }


def write_json_report(path: str, batch: EmailFilesBatch) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(
            {"summary": batch_summary(batch), "files": batch_to_rows(batch)},
            f,
            ensure_ascii=False,
            indent=2,
        )


def write_csv_report(path: str, batch: EmailFilesBatch) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=REPORT_FIELDS)
        w.writeheader()
        for row in batch_to_rows(batch):
            w.writerow({k: row.get(k) for k in REPORT_FIELDS})


def format_statistics(stats: StorageStatistics) -> str:
    lines = [f"Files: {stats.total_files} ({stats.total_size_bytes} bytes)"]
    for vendor, count in sorted(stats.files_by_vendor.items()):
        lines.append(f"  {vendor}: {count}")
    if stats.oldest_file and stats.newest_file:
        lines.append(f"Oldest: {stats.oldest_file:%Y-%m-%d %H:%M}  Newest: {stats.newest_file:%Y-%m-%d %H:%M}")
    return "\n".join(lines)


# --------------------------- Argument handling ---------------------------
def parse_date(value: str) -> dt.date:
    return dt.datetime.strptime(value, "%Y-%m-%d").date()


def non_negative_int(value: str) -> int:
    n = int(value)
    if n < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {n}")
    return n


def resolve_period(args: argparse.Namespace) -> Optional[TimePeriod]:
    if args.start_date or args.end_date:
        if not (args.start_date and args.end_date):
            raise ValueError("--start-date and --end-date must be given together")
        start = parse_date(args.start_date)
        end = parse_date(args.end_date) + dt.timedelta(days=1)
        return periods.custom(start, end)
    return periods.parse_period(args.period, days=args.days)


def build_options(args: argparse.Namespace) -> FetchOptions:
    return FetchOptions(
        include_email_body=args.include_body,
        attachment_strategy=AttachmentHandlingStrategy(args.strategy),
        destination_folder=args.destination,
        naming_strategy=FileNamingStrategy(args.naming) if args.naming else None,
        unread_only=not args.all_mail,
        mark_as_read=not args.no_mark_read,
        max_results=args.max_results,
    )


def build_persistence(settings: AppSettings) -> FileSystemPersistenceManager:
    fs = settings.storage.file_system
    return FileSystemPersistenceManager(
        base_directory=fs.base_directory,
        sender_to_folder=settings.sender_to_folder,
        default_naming_strategy=fs.default_naming_strategy,
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Download vendor invoice attachments from Gmail")
    ap.add_argument("--config", default=DEFAULT_CONFIG_PATH)
    ap.add_argument(
        "--period",
        default="last-month",
        choices=sorted(periods.PERIOD_FACTORIES) + ["last-n-days", "all"],
    )
    ap.add_argument("--days", type=int, default=None, help="Window size for --period last-n-days")
    ap.add_argument("--start-date", default=None, help="YYYY-MM-DD (overrides --period)")
    ap.add_argument("--end-date", default=None, help="YYYY-MM-DD, inclusive")
    ap.add_argument(
        "--vendor", action="append", default=None, help="Vendor email (repeatable); default: all configured"
    )

    ap.add_argument(
        "--strategy",
        default=AttachmentHandlingStrategy.PERSIST_AND_REFERENCE.value,
        choices=[s.value for s in AttachmentHandlingStrategy],
    )
    ap.add_argument("--naming", default=None, choices=[s.value for s in FileNamingStrategy])
    ap.add_argument("--destination", default=None, help="Folder override for every vendor")
    ap.add_argument("--all-mail", action="store_true", help="Include already-read messages")
    ap.add_argument("--no-mark-read", action="store_true")
    ap.add_argument("--include-body", action="store_true")
    ap.add_argument("--max-results", type=non_negative_int, default=None, help="Per vendor")

    ap.add_argument("--save-json", default=None)
    ap.add_argument("--save-csv", default=None)
    ap.add_argument("--stats", action="store_true", help="Print storage statistics and exit")
    ap.add_argument("--vendors", action="store_true", help="List configured vendors and exit")
    ap.add_argument("--debug", action="store_true")
    return ap


# --------------------------- Main ---------------------------
def main(argv: Optional[List[str]] = None) -> int:  # pragma: no cover - CLI orchestration
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO, format="%(message)s")

    config_service = ConfigurationService(args.config)
    try:
        settings = config_service.load_configuration()
        period = resolve_period(args)
    except (FileNotFoundError, ConfigurationError, ValueError) as e:
        print(f"Configuration error: {e}")
        return 2

    persistence = build_persistence(settings)
    if args.stats:
        print(format_statistics(persistence.get_statistics()))
        return 0
    if args.vendors:
        for vendor, folder in settings.sender_to_folder.items():
            print(f"{vendor} -> {folder}")
        return 0

    creds = settings.google_credentials
    svc = build_gmail_service(creds.credentials_location, creds.token_destination)
    manager = EmailFilesManager(
        EmailFilesDependencies(
            email_service=GmailEmailService(svc),
            persistence_manager=persistence,
            config_service=config_service,
        )
    )

    options = build_options(args)
    if args.vendor:
        batch = manager.fetch_by_vendors(args.vendor, period, options)
    else:
        batch = manager.fetch_by_period(period, options)

    if args.save_json:
        write_json_report(args.save_json, batch)
        print(f"Saved JSON report → {args.save_json}")
    if args.save_csv:
        write_csv_report(args.save_csv, batch)
        print(f"Saved CSV report → {args.save_csv}")

    summary = batch_summary(batch)
    print(
        f"Done. {summary['total_emails']} emails, {summary['total_attachments']} attachments, "
        f"{summary['total_size_bytes']} bytes ({summary['period']})."
    )
    for vendor, count in summary["invoices_by_vendor"].items():
        print(f"  {vendor}: {count}")
    for err in batch.errors:
        print(f"  error: {err}")
    return 0 if batch.is_success else 1


if __name__ == "__main__":
    sys.exit(main())
