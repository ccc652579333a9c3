import base64
import dataclasses
import datetime as dt
from typing import Dict, List

import pytest

from emailfiles.adapters.base import (
    AttachmentData,
    MessageDetails,
    MessagePart,
    MessagePartBody,
    MessageRef,
)
from emailfiles.config import AppSettings, StaticConfigurationService
from emailfiles.domain import periods
from emailfiles.domain.models import (
    AttachmentHandlingStrategy,
    AttachmentStorageResult,
    FetchOptions,
    FileNamingStrategy,
    StorageStatistics,
    VendorInfo,
)
from emailfiles.usecases.fetch_email_files import (
    EmailFilesDependencies,
    EmailFilesManager,
    first_body,
    parse_header_date,
    sender_name_from_header,
)

ACME = "billing@acme.com"
GLOBEX = "ap@globex.com"
PDF_B64 = base64.urlsafe_b64encode(b"pdf").decode()


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode()


def make_message(message_id: str, sender: str = ACME, pdf_name: str = "inv.pdf") -> MessageDetails:
    return MessageDetails(
        id=message_id,
        internal_date=dt.datetime(2024, 3, 6, 8, 0, tzinfo=dt.timezone.utc),
        headers={
            "From": f"Acme Billing <{sender}>",
            "Subject": f"Invoice {message_id}",
            "Date": "Tue, 05 Mar 2024 10:00:00 +0000",
        },
        payload=MessagePart(
            mime_type="multipart/mixed",
            body=MessagePartBody(size=0),
            parts=[
                MessagePart(part_id="0", mime_type="text/plain", body=MessagePartBody(data=_b64("Invoice attached"))),
                MessagePart(part_id="1", mime_type="text/html", body=MessagePartBody(data=_b64("<p>Invoice</p>"))),
                MessagePart(
                    part_id="2",
                    mime_type="application/pdf",
                    filename=pdf_name,
                    body=MessagePartBody(attachment_id=f"{message_id}-att", size=3),
                ),
                MessagePart(
                    part_id="3",
                    mime_type="image/png",
                    filename="logo.png",
                    body=MessagePartBody(attachment_id=f"{message_id}-logo", size=10),
                ),
            ],
        ),
    )


class FakeEmailService:
    def __init__(self, inbox: Dict[str, List[str]]):
        self.inbox = inbox
        self.messages: Dict[str, MessageDetails] = {}
        for sender, ids in inbox.items():
            for mid in ids:
                self.messages[mid] = make_message(mid, sender)
        self.queries = []
        self.attachment_calls = []
        self.marked = []
        self.failing_vendors = set()
        self.failing_messages = set()
        self.attachment_payload = PDF_B64
        self.mark_fails = False

    def list_messages(self, query):
        self.queries.append(query)
        if query.sender in self.failing_vendors:
            raise RuntimeError("mailbox unavailable")
        return [MessageRef(id=mid) for mid in self.inbox.get(query.sender, [])]

    def get_message_details(self, message_id):
        if message_id in self.failing_messages:
            raise RuntimeError("message vanished")
        return self.messages[message_id]

    def get_attachment(self, message_id, attachment_id):
        self.attachment_calls.append((message_id, attachment_id))
        return AttachmentData(attachment_id=attachment_id, size=3, data=self.attachment_payload)

    def mark_as_read(self, message_id):
        if self.mark_fails:
            raise RuntimeError("label change rejected")
        self.marked.append(message_id)


class FakePersistence:
    def __init__(self, fail_with=None):
        self.saved = []
        self.fail_with = fail_with

    def save_attachment(self, context, data):
        self.saved.append((context, data))
        if self.fail_with:
            return AttachmentStorageResult(success=False, error=self.fail_with)
        return AttachmentStorageResult(
            success=True, storage_reference=f"/store/{context.file_name}", bytes_written=len(data)
        )

    def get_statistics(self):
        return StorageStatistics()


def make_manager(inbox=None, persistence=None, vendors=None):
    inbox = inbox if inbox is not None else {ACME: ["m1"]}
    email = FakeEmailService(inbox)
    persistence = persistence or FakePersistence()
    settings = AppSettings(sender_to_folder=vendors or {ACME: "invoices/acme", GLOBEX: "invoices/globex"})
    manager = EmailFilesManager(
        EmailFilesDependencies(
            email_service=email,
            persistence_manager=persistence,
            config_service=StaticConfigurationService(settings),
        )
    )
    return manager, email, persistence


MARCH = periods.custom(dt.date(2024, 3, 1), dt.date(2024, 4, 1))


def test_persist_and_reference_default_flow():
    manager, email, persistence = make_manager()
    batch = manager.fetch_by_vendor(ACME, MARCH)

    assert batch.is_success
    assert len(batch.records) == 1
    record = batch.records[0]
    assert record.message_id == "m1"
    assert record.sender == ACME
    assert record.sender_name == "Acme Billing"
    assert record.vendor_name == "billing"
    assert record.subject == "Invoice m1"
    assert record.sent_date == dt.datetime(2024, 3, 5, 10, 0, tzinfo=dt.timezone.utc)
    assert record.body_html is None and record.body_text is None

    # image/png is not on the allow-list
    assert [a.file_name for a in record.attachments] == ["inv.pdf"]
    att = record.attachments[0]
    assert att.is_persisted is True
    assert att.storage_reference == "/store/inv.pdf"
    assert att.data is None
    assert att.is_accessible and not att.is_in_memory

    context, data = persistence.saved[0]
    assert data == b"pdf"
    assert context.vendor_email == ACME
    assert context.vendor_name == "billing"
    assert context.email_date == record.sent_date
    assert context.file_size == 3
    assert context.message_id == "m1"
    assert email.marked == ["m1"]


def test_query_uses_period_and_unread_flag():
    manager, email, _ = make_manager()
    manager.fetch_by_vendor(ACME, MARCH, FetchOptions(unread_only=False))
    query = email.queries[0]
    assert query.sender == ACME
    assert query.unread_only is False
    assert query.after == dt.date(2024, 3, 1)
    assert query.before == dt.date(2024, 4, 1)

    manager.fetch_by_vendor(ACME)
    query = email.queries[1]
    assert query.unread_only is True
    assert query.after is None and query.before is None


def test_metadata_only_skips_download_and_storage():
    manager, email, persistence = make_manager()
    options = FetchOptions(attachment_strategy=AttachmentHandlingStrategy.METADATA_ONLY)
    batch = manager.fetch_by_vendor(ACME, MARCH, options)
    att = batch.records[0].attachments[0]
    assert att.file_size == 3
    assert att.attachment_id == "m1-att"
    assert not att.is_accessible
    assert email.attachment_calls == []
    assert persistence.saved == []


def test_load_in_memory_keeps_bytes_without_saving():
    manager, email, persistence = make_manager()
    options = FetchOptions(attachment_strategy=AttachmentHandlingStrategy.LOAD_IN_MEMORY)
    att = manager.fetch_by_vendor(ACME, MARCH, options).records[0].attachments[0]
    assert att.data == b"pdf"
    assert att.is_in_memory and not att.is_persisted
    assert email.attachment_calls == [("m1", "m1-att")]
    assert persistence.saved == []


def test_persist_and_load_keeps_both():
    manager, _, persistence = make_manager()
    options = FetchOptions(attachment_strategy=AttachmentHandlingStrategy.PERSIST_AND_LOAD)
    att = manager.fetch_by_vendor(ACME, MARCH, options).records[0].attachments[0]
    assert att.data == b"pdf"
    assert att.is_persisted
    assert len(persistence.saved) == 1


def test_options_persistence_and_placement_overrides():
    manager, _, default_store = make_manager()
    override = FakePersistence()
    options = FetchOptions(
        persistence_manager=override,
        destination_folder="archive/2024",
        naming_strategy=FileNamingStrategy.WITH_TIMESTAMP,
    )
    manager.fetch_by_vendor(ACME, MARCH, options)
    assert default_store.saved == []
    context, _ = override.saved[0]
    assert context.suggested_folder == "archive/2024"
    assert context.naming_strategy == FileNamingStrategy.WITH_TIMESTAMP


def test_aggregates_across_vendors():
    manager, _, _ = make_manager(inbox={ACME: ["m1", "m2"], GLOBEX: ["g1"]})
    batch = manager.fetch_by_vendors([ACME, GLOBEX], MARCH)
    meta = batch.metadata
    assert [r.message_id for r in batch.records] == ["m1", "m2", "g1"]
    assert meta.total_emails == meta.total_invoices == 3
    assert meta.total_attachments == 3
    assert meta.total_size_bytes == 9
    assert meta.invoices_by_vendor == {ACME: 2, GLOBEX: 1}
    assert meta.period == MARCH
    assert meta.processing_time >= dt.timedelta(0)


def test_vendor_failure_is_isolated():
    manager, email, _ = make_manager(inbox={ACME: ["m1"], GLOBEX: ["g1"]})
    email.failing_vendors.add(ACME)
    batch = manager.fetch_by_vendors([ACME, GLOBEX], MARCH)
    assert batch.errors == (f"Vendor {ACME}: mailbox unavailable",)
    assert not batch.is_success
    assert [r.message_id for r in batch.records] == ["g1"]
    assert batch.metadata.invoices_by_vendor == {GLOBEX: 1}


def test_message_failure_is_recorded_and_vendor_continues():
    manager, email, _ = make_manager(inbox={ACME: ["m1", "m2"]})
    email.failing_messages.add("m1")
    batch = manager.fetch_by_vendor(ACME, MARCH)
    assert batch.errors == ("Email m1: message vanished",)
    assert [r.message_id for r in batch.records] == ["m2"]
    assert batch.metadata.invoices_by_vendor == {ACME: 1}


def test_attachment_decode_failure_keeps_message():
    manager, email, persistence = make_manager()
    email.attachment_payload = "!!!"
    batch = manager.fetch_by_vendor(ACME, MARCH)
    assert len(batch.records) == 1
    assert batch.records[0].attachments == []
    assert len(batch.errors) == 1
    assert batch.errors[0].startswith("Email m1: inv.pdf: ")
    assert persistence.saved == []
    assert batch.metadata.total_attachments == 0


def test_persist_failure_is_recorded_and_attachment_kept():
    manager, _, _ = make_manager(persistence=FakePersistence(fail_with="disk full"))
    batch = manager.fetch_by_vendor(ACME, MARCH)
    assert batch.errors == ("Email m1: inv.pdf: disk full",)
    att = batch.records[0].attachments[0]
    assert att.is_persisted is False
    assert att.storage_reference is None


def test_mark_as_read_failure_is_not_an_error():
    manager, email, _ = make_manager()
    email.mark_fails = True
    batch = manager.fetch_by_vendor(ACME, MARCH)
    assert batch.is_success
    assert len(batch.records) == 1


def test_mark_as_read_can_be_disabled():
    manager, email, _ = make_manager()
    manager.fetch_by_vendor(ACME, MARCH, FetchOptions(mark_as_read=False))
    assert email.marked == []


def test_max_results_caps_messages_per_vendor():
    manager, email, _ = make_manager(inbox={ACME: ["m1", "m2", "m3"]})
    batch = manager.fetch_by_vendor(ACME, MARCH, FetchOptions(max_results=2))
    assert [r.message_id for r in batch.records] == ["m1", "m2"]
    assert email.marked == ["m1", "m2"]


def test_include_email_body():
    manager, _, _ = make_manager()
    options = FetchOptions(include_email_body=True, include_attachments=False)
    record = manager.fetch_by_vendor(ACME, MARCH, options).records[0]
    assert record.body_html == "<p>Invoice</p>"
    assert record.body_text == "Invoice attached"
    assert record.attachments == []


def test_without_metadata_falls_back_to_internal_date():
    manager, _, persistence = make_manager()
    record = manager.fetch_by_vendor(ACME, MARCH, FetchOptions(include_metadata=False)).records[0]
    assert record.subject == ""
    assert record.sent_date is None
    context, _ = persistence.saved[0]
    assert context.email_date == dt.datetime(2024, 3, 6, 8, 0, tzinfo=dt.timezone.utc)


def test_fetch_by_period_uses_all_configured_vendors():
    manager, email, _ = make_manager(inbox={ACME: ["m1"], GLOBEX: ["g1"]})
    batch = manager.fetch_by_period(None)
    assert [q.sender for q in email.queries] == [ACME, GLOBEX]
    assert batch.metadata.period is None
    assert batch.metadata.invoices_by_vendor == {ACME: 1, GLOBEX: 1}


def test_fetch_last_n_days_builds_window_ending_today():
    manager, email, _ = make_manager(inbox={})
    batch = manager.fetch_last_n_days(3)
    today = dt.date.today()
    assert batch.metadata.period.label == "Last 3 days"
    assert email.queries[0].after == today - dt.timedelta(days=2)
    assert email.queries[0].before == today + dt.timedelta(days=1)
    assert batch.records == ()
    assert batch.is_success


def test_fetch_last_month_wrapper():
    manager, email, _ = make_manager(inbox={})
    batch = manager.fetch_last_month()
    assert batch.metadata.period == periods.last_month()
    assert len(email.queries) == 2


def test_get_configured_vendors():
    manager, _, _ = make_manager()
    assert manager.get_configured_vendors() == [
        VendorInfo(email=ACME, name="billing"),
        VendorInfo(email=GLOBEX, name="ap"),
    ]


@pytest.mark.parametrize(
    "header,expected",
    [
        ('"Acme Billing" <billing@acme.com>', "Acme Billing"),
        ("Acme <billing@acme.com>", "Acme"),
        ("billing@acme.com", "billing@acme.com"),
        (None, ""),
    ],
)
def test_sender_name_from_header(header, expected):
    assert sender_name_from_header(header) == expected


def test_parse_header_date_tolerates_garbage():
    assert parse_header_date("not a date") is None
    assert parse_header_date(None) is None


def test_first_body_prefers_payload_body():
    payload = MessagePart(mime_type="text/plain", body=MessagePartBody(data=_b64("hello")))
    assert first_body(payload, "text/html") == "hello"
    assert first_body(None, "text/plain") is None


def test_negative_max_results_is_rejected():
    with pytest.raises(ValueError, match="max_results"):
        FetchOptions(max_results=-1)


def test_zero_max_results_fetches_nothing():
    manager, email, _ = make_manager(inbox={ACME: ["m1", "m2"]})
    batch = manager.fetch_by_vendor(ACME, MARCH, FetchOptions(max_results=0))
    assert batch.records == ()
    assert batch.metadata.invoices_by_vendor == {ACME: 0}
    assert email.marked == []


def test_returned_batch_is_frozen():
    manager, _, _ = make_manager(inbox={ACME: ["m1"]})
    batch = manager.fetch_by_vendor(ACME, MARCH)
    assert isinstance(batch.records, tuple)
    assert isinstance(batch.errors, tuple)
    with pytest.raises(dataclasses.FrozenInstanceError):
        batch.errors = ("late error",)
    with pytest.raises(dataclasses.FrozenInstanceError):
        batch.metadata.total_emails = 99
