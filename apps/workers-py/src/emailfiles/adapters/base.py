from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, List, Optional, Protocol

from ..domain.models import AttachmentContext, AttachmentStorageResult, StorageStatistics
from ..domain.query import EmailQuery


@dataclass
class MessageRef:
    id: str
    thread_id: str = ""


@dataclass
class MessagePartBody:
    attachment_id: str = ""
    size: int = 0
    data: str = ""  # base64url, inline parts only


@dataclass
class MessagePart:
    part_id: str = ""
    mime_type: str = ""
    filename: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[MessagePartBody] = None
    parts: List["MessagePart"] = field(default_factory=list)


@dataclass
class MessageDetails:
    id: str
    thread_id: str = ""
    snippet: str = ""
    internal_date: Optional[dt.datetime] = None
    headers: Dict[str, str] = field(default_factory=dict)
    payload: Optional[MessagePart] = None

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup; ``None`` when absent."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


@dataclass
class AttachmentData:
    attachment_id: str
    size: int
    data: str  # base64url


class EmailService(Protocol):
    """Minimal contract a mail provider adapter must fulfil."""

    def list_messages(self, query: EmailQuery) -> List[MessageRef]: ...

    def get_message_details(self, message_id: str) -> MessageDetails: ...

    def get_attachment(self, message_id: str, attachment_id: str) -> AttachmentData: ...

    def mark_as_read(self, message_id: str) -> None: ...


class PersistenceManager(Protocol):
    """Storage backend for attachment bytes. Save calls never raise."""

    def save_attachment(self, context: AttachmentContext, data: bytes) -> AttachmentStorageResult: ...

    def save_attachment_stream(
        self, context: AttachmentContext, stream: BinaryIO
    ) -> AttachmentStorageResult: ...

    def get_attachment(self, storage_reference: str) -> bytes: ...

    def open_attachment_stream(self, storage_reference: str) -> BinaryIO: ...

    def exists(self, storage_reference: str) -> bool: ...

    def delete_attachment(self, storage_reference: str) -> bool: ...

    def get_statistics(self) -> StorageStatistics: ...
