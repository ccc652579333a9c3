"""
Vendor-oriented fetch use cases.

``EmailFilesManager`` walks vendors, then messages, then attachments, strictly
in order, and folds everything into one ``EmailFilesBatch``. Failures are
isolated per level: a bad attachment is recorded and its message continues,
a bad message is recorded and its vendor continues, a bad vendor is recorded
and the batch continues.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Dict, Iterable, List, Optional

from ..adapters.base import EmailService, MessageDetails, MessagePart, PersistenceManager
from ..config import ConfigurationService
from ..domain import periods
from ..domain.attachments import (
    AttachmentDecodeError,
    AttachmentDownloader,
    AttachmentFilter,
    DownloadedAttachment,
    decode_base64url,
)
from ..domain.models import (
    AttachmentContext,
    AttachmentHandlingStrategy,
    BatchMetadata,
    EmailAttachmentRecord,
    EmailFilesBatch,
    FetchOptions,
    FileAttachment,
    VendorInfo,
    vendor_name_from_email,
)
from ..domain.periods import TimePeriod
from ..domain.query import EmailQuery

logger = logging.getLogger(__name__)

_NAME_BEFORE_ADDR = re.compile(r"^(.+?)\s*<")


@dataclass
class EmailFilesDependencies:
    """Collaborators wired once at startup and handed to the manager."""

    email_service: EmailService
    persistence_manager: PersistenceManager
    config_service: ConfigurationService
    attachment_filter: Optional[AttachmentFilter] = None
    attachment_downloader: Optional[AttachmentDownloader] = None


# --------------------------- Header/body extraction ---------------------------
def sender_name_from_header(from_header: Optional[str]) -> str:
    if not from_header:
        return ""
    m = _NAME_BEFORE_ADDR.match(from_header)
    if not m:
        return from_header
    return m.group(1).strip().strip('"')


def parse_header_date(value: Optional[str]) -> Optional[dt.datetime]:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None


def decode_body_text(data: str) -> str:
    try:
        return decode_base64url(data).decode("utf-8", errors="replace")
    except AttachmentDecodeError:
        return data


def first_body(payload: Optional[MessagePart], mime_type: str) -> Optional[str]:
    """Payload's own body if it has one, else the first direct child of ``mime_type``."""
    if payload is None:
        return None
    if payload.body is not None and payload.body.data:
        return decode_body_text(payload.body.data)
    for part in payload.parts:
        if part.mime_type == mime_type and part.body is not None and part.body.data:
            return decode_body_text(part.body.data)
    return None


# --------------------------- Manager ---------------------------
class EmailFilesManager:
    def __init__(self, deps: EmailFilesDependencies):
        self.email_service = deps.email_service
        self.persistence_manager = deps.persistence_manager
        self.config_service = deps.config_service
        self.attachment_filter = deps.attachment_filter or AttachmentFilter()
        self.attachment_downloader = deps.attachment_downloader or AttachmentDownloader(
            deps.email_service
        )

    # ----- convenience periods -----
    def fetch_last_week(self, options: Optional[FetchOptions] = None) -> EmailFilesBatch:
        return self.fetch_by_period(periods.last_week(), options)

    def fetch_this_week(self, options: Optional[FetchOptions] = None) -> EmailFilesBatch:
        return self.fetch_by_period(periods.this_week(), options)

    def fetch_last_month(self, options: Optional[FetchOptions] = None) -> EmailFilesBatch:
        return self.fetch_by_period(periods.last_month(), options)

    def fetch_this_month(self, options: Optional[FetchOptions] = None) -> EmailFilesBatch:
        return self.fetch_by_period(periods.this_month(), options)

    def fetch_last_quarter(self, options: Optional[FetchOptions] = None) -> EmailFilesBatch:
        return self.fetch_by_period(periods.last_quarter(), options)

    def fetch_this_quarter(self, options: Optional[FetchOptions] = None) -> EmailFilesBatch:
        return self.fetch_by_period(periods.this_quarter(), options)

    def fetch_last_year(self, options: Optional[FetchOptions] = None) -> EmailFilesBatch:
        return self.fetch_by_period(periods.last_year(), options)

    def fetch_this_year(self, options: Optional[FetchOptions] = None) -> EmailFilesBatch:
        return self.fetch_by_period(periods.this_year(), options)

    def fetch_last_n_days(self, days: int, options: Optional[FetchOptions] = None) -> EmailFilesBatch:
        return self.fetch_by_period(periods.last_n_days(days), options)

    # ----- general forms -----
    def fetch_by_period(
        self, period: Optional[TimePeriod], options: Optional[FetchOptions] = None
    ) -> EmailFilesBatch:
        """Fetch from every configured vendor."""
        settings = self.config_service.load_configuration()
        return self.fetch_by_vendors(list(settings.sender_to_folder), period, options)

    def fetch_by_vendor(
        self,
        vendor_email: str,
        period: Optional[TimePeriod] = None,
        options: Optional[FetchOptions] = None,
    ) -> EmailFilesBatch:
        return self.fetch_by_vendors([vendor_email], period, options)

    def fetch_by_vendors(
        self,
        vendor_emails: Iterable[str],
        period: Optional[TimePeriod] = None,
        options: Optional[FetchOptions] = None,
    ) -> EmailFilesBatch:
        started = time.perf_counter()
        options = options or FetchOptions()
        vendors = list(vendor_emails)
        records: List[EmailAttachmentRecord] = []
        errors: List[str] = []
        by_vendor: Dict[str, int] = {}

        logger.info(
            "Fetching email files from %d vendors. Period: %s",
            len(vendors),
            period.label if period else "All time",
        )

        for vendor_email in vendors:
            try:
                vendor_records = self._fetch_vendor(vendor_email, period, options, errors)
            except Exception as e:
                logger.error("Error fetching email files from vendor %s", vendor_email, exc_info=True)
                errors.append(f"Vendor {vendor_email}: {e}")
                continue
            records.extend(vendor_records)
            by_vendor[vendor_email] = by_vendor.get(vendor_email, 0) + len(vendor_records)
            logger.info("Vendor %s: %d emails", vendor_email, len(vendor_records))

        meta = BatchMetadata(
            total_emails=len(records),
            total_invoices=len(records),
            total_attachments=sum(len(r.attachments) for r in records),
            total_size_bytes=sum(a.file_size for r in records for a in r.attachments),
            processing_time=dt.timedelta(seconds=time.perf_counter() - started),
            period=period,
            invoices_by_vendor=by_vendor,
        )

        logger.info(
            "Fetched %d emails with %d attachments in %dms (%d errors)",
            meta.total_invoices,
            meta.total_attachments,
            int(meta.processing_time.total_seconds() * 1000),
            len(errors),
        )
        return EmailFilesBatch(records=tuple(records), metadata=meta, errors=tuple(errors))

    def get_configured_vendors(self) -> List[VendorInfo]:
        settings = self.config_service.load_configuration()
        return [
            VendorInfo(email=email, name=vendor_name_from_email(email))
            for email in settings.sender_to_folder
        ]

    # ----- per vendor / message / attachment -----
    def _fetch_vendor(
        self,
        vendor_email: str,
        period: Optional[TimePeriod],
        options: FetchOptions,
        errors: List[str],
    ) -> List[EmailAttachmentRecord]:
        query = EmailQuery(
            sender=vendor_email,
            unread_only=options.unread_only,
            after=period.start if period else None,
            before=period.end if period else None,
        )
        messages = self.email_service.list_messages(query)
        if options.max_results is not None:
            messages = messages[: options.max_results]

        records: List[EmailAttachmentRecord] = []
        for idx, ref in enumerate(messages, start=1):
            try:
                record = self._process_message(ref.id, vendor_email, options, errors)
            except Exception as e:
                logger.error("Error processing email %s", ref.id, exc_info=True)
                errors.append(f"Email {ref.id}: {e}")
                continue
            logger.info(
                "[%d] %s | %s | %d attachments",
                idx,
                record.subject,
                record.sender_name or vendor_email,
                len(record.attachments),
            )
            records.append(record)
        return records

    def _process_message(
        self, message_id: str, vendor_email: str, options: FetchOptions, errors: List[str]
    ) -> EmailAttachmentRecord:
        message = self.email_service.get_message_details(message_id)
        record = EmailAttachmentRecord(
            message_id=message_id,
            sender=vendor_email,
            sender_name=sender_name_from_header(message.header("From")),
            vendor_name=vendor_name_from_email(vendor_email),
        )

        if options.include_metadata:
            record.subject = message.header("Subject") or ""
            record.sent_date = parse_header_date(message.header("Date"))

        if options.include_email_body:
            record.body_html = first_body(message.payload, "text/html")
            record.body_text = first_body(message.payload, "text/plain")

        if options.include_attachments and message.payload is not None:
            email_date = self._email_date(record, message)
            for part in self.attachment_filter.filter_attachments(message.payload.parts):
                try:
                    attachment = self._process_attachment(
                        message_id, part, vendor_email, email_date, options, errors
                    )
                except Exception as e:
                    logger.error(
                        "Error handling attachment %s from %s", part.filename, message_id, exc_info=True
                    )
                    errors.append(f"Email {message_id}: {part.filename}: {e}")
                    continue
                record.attachments.append(attachment)

        if options.mark_as_read:
            try:
                self.email_service.mark_as_read(message_id)
            except Exception as e:
                logger.warning("Failed to mark email %s as read: %s", message_id, e)

        return record

    def _process_attachment(
        self,
        message_id: str,
        part: MessagePart,
        vendor_email: str,
        email_date: dt.datetime,
        options: FetchOptions,
        errors: List[str],
    ) -> FileAttachment:
        body = part.body
        attachment = FileAttachment(
            file_name=part.filename,
            file_size=body.size if body else 0,
            mime_type=part.mime_type,
            attachment_id=body.attachment_id if body else "",
        )
        strategy = options.attachment_strategy
        if strategy == AttachmentHandlingStrategy.METADATA_ONLY:
            return attachment

        downloaded = self.attachment_downloader.download(
            message_id, attachment.attachment_id, part.filename, part.mime_type
        )
        if strategy == AttachmentHandlingStrategy.LOAD_IN_MEMORY:
            attachment.data = downloaded.data
            return attachment

        persistence = options.persistence_manager or self.persistence_manager
        context = self._attachment_context(vendor_email, email_date, downloaded, options)
        result = persistence.save_attachment(context, downloaded.data)
        if strategy == AttachmentHandlingStrategy.PERSIST_AND_LOAD:
            attachment.data = downloaded.data
        if result.success:
            attachment.is_persisted = True
            attachment.storage_reference = result.storage_reference
            attachment.storage_type = result.storage_type
        else:
            errors.append(f"Email {message_id}: {part.filename}: {result.error or 'persistence failed'}")
        return attachment

    @staticmethod
    def _email_date(record: EmailAttachmentRecord, message: MessageDetails) -> dt.datetime:
        return record.sent_date or message.internal_date or dt.datetime.now(dt.timezone.utc)

    @staticmethod
    def _attachment_context(
        vendor_email: str,
        email_date: dt.datetime,
        downloaded: DownloadedAttachment,
        options: FetchOptions,
    ) -> AttachmentContext:
        return AttachmentContext(
            file_name=downloaded.file_name,
            vendor_email=vendor_email,
            vendor_name=vendor_name_from_email(vendor_email),
            email_date=email_date,
            mime_type=downloaded.mime_type,
            message_id=downloaded.message_id,
            file_size=len(downloaded.data),
            suggested_folder=options.destination_folder,
            naming_strategy=options.naming_strategy,
        )
