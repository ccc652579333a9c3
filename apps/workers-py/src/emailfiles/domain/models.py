"""Value objects produced and consumed by the email-files pipeline."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from .periods import TimePeriod

if TYPE_CHECKING:  # pragma: no cover
    from ..adapters.base import PersistenceManager


class AttachmentHandlingStrategy(str, Enum):
    METADATA_ONLY = "metadata-only"
    LOAD_IN_MEMORY = "load-in-memory"
    PERSIST_AND_REFERENCE = "persist-and-reference"
    PERSIST_AND_LOAD = "persist-and-load"


class FileNamingStrategy(str, Enum):
    ORIGINAL = "original"
    WITH_TIMESTAMP = "with-timestamp"  # invoice_20241215_143022.pdf
    WITH_SENDER = "with-sender"  # acme_invoice.pdf
    WITH_DATE_AND_SENDER = "with-date-and-sender"  # 20241215_acme_invoice.pdf


class StorageType(str, Enum):
    FILE_SYSTEM = "file-system"
    AZURE_BLOB_STORAGE = "azure-blob-storage"
    AWS_S3 = "aws-s3"
    DATABASE_BLOB = "database-blob"
    ONE_DRIVE = "one-drive"
    GOOGLE_DRIVE = "google-drive"
    CUSTOM = "custom"


@dataclass(frozen=True)
class AttachmentContext:
    """Inputs the persistence layer uses to place and name a file."""

    file_name: str
    vendor_email: str
    vendor_name: str
    email_date: dt.datetime
    mime_type: str = ""
    message_id: str = ""
    file_size: int = 0
    suggested_folder: Optional[str] = None
    naming_strategy: Optional[FileNamingStrategy] = None


@dataclass(frozen=True)
class AttachmentStorageResult:
    success: bool
    storage_reference: str = ""
    error: Optional[str] = None
    bytes_written: int = 0
    storage_type: StorageType = StorageType.FILE_SYSTEM


@dataclass
class StorageStatistics:
    total_files: int = 0
    total_size_bytes: int = 0
    files_by_vendor: Dict[str, int] = field(default_factory=dict)
    oldest_file: Optional[dt.datetime] = None
    newest_file: Optional[dt.datetime] = None


@dataclass
class FileAttachment:
    file_name: str
    file_size: int
    mime_type: str
    attachment_id: str
    is_persisted: bool = False
    storage_reference: Optional[str] = None
    storage_type: Optional[StorageType] = None
    # only set by strategies that keep bytes in memory
    data: Optional[bytes] = field(default=None, repr=False)

    @property
    def is_in_memory(self) -> bool:
        return self.data is not None

    @property
    def is_accessible(self) -> bool:
        return self.is_persisted or self.is_in_memory


@dataclass
class EmailAttachmentRecord:
    """One source message and the attachments extracted from it."""

    message_id: str
    sender: str
    sender_name: str = ""
    subject: str = ""
    sent_date: Optional[dt.datetime] = None
    body_html: Optional[str] = None
    body_text: Optional[str] = None
    vendor_name: Optional[str] = None
    attachments: List[FileAttachment] = field(default_factory=list)


@dataclass(frozen=True)
class BatchMetadata:
    total_emails: int = 0
    total_invoices: int = 0
    total_attachments: int = 0
    total_size_bytes: int = 0
    processing_time: dt.timedelta = dt.timedelta(0)
    period: Optional[TimePeriod] = None
    invoices_by_vendor: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class EmailFilesBatch:
    """Result of one fetch call, assembled once the walk is complete."""

    records: Tuple[EmailAttachmentRecord, ...] = ()
    metadata: BatchMetadata = field(default_factory=BatchMetadata)
    errors: Tuple[str, ...] = ()

    @property
    def is_success(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class VendorInfo:
    email: str
    name: str


@dataclass
class FetchOptions:
    include_metadata: bool = True
    include_email_body: bool = False
    include_attachments: bool = True
    attachment_strategy: AttachmentHandlingStrategy = AttachmentHandlingStrategy.PERSIST_AND_REFERENCE
    # None falls back to the manager's default persistence
    persistence_manager: Optional["PersistenceManager"] = None
    destination_folder: Optional[str] = None
    naming_strategy: Optional[FileNamingStrategy] = None
    unread_only: bool = True
    mark_as_read: bool = True
    max_results: Optional[int] = None
    parallel_download: bool = False  # accepted, processing stays sequential

    def __post_init__(self):
        if self.max_results is not None and self.max_results < 0:
            raise ValueError(f"max_results must be >= 0, got {self.max_results}")


def vendor_name_from_email(email: str) -> str:
    return (email or "").split("@")[0]
