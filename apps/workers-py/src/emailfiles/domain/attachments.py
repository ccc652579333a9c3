"""Attachment admission and retrieval."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, FrozenSet, Iterable, List

if TYPE_CHECKING:  # pragma: no cover
    from ..adapters.base import EmailService, MessagePart

DEFAULT_MIME_TYPES: FrozenSet[str] = frozenset({"application/pdf", "application/octet-stream"})


class AttachmentDecodeError(ValueError):
    pass


def decode_base64url(data: str) -> bytes:
    """Decode the URL-safe base64 variant Gmail uses for attachment bodies."""
    std = (data or "").replace("-", "+").replace("_", "/")
    std += "=" * (-len(std) % 4)
    try:
        return base64.b64decode(std.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise AttachmentDecodeError(f"Invalid base64url payload: {e}") from e


class AttachmentFilter:
    """Admits named parts whose MIME type is on the allow-list."""

    def __init__(self, allowed_mime_types: Iterable[str] = DEFAULT_MIME_TYPES):
        self.allowed_mime_types = frozenset(allowed_mime_types)

    def is_valid(self, part: "MessagePart") -> bool:
        return bool(part.filename) and part.mime_type in self.allowed_mime_types

    def filter_attachments(self, parts: Iterable["MessagePart"]) -> List["MessagePart"]:
        return [p for p in parts if self.is_valid(p)]


@dataclass
class DownloadedAttachment:
    message_id: str
    attachment_id: str
    file_name: str
    mime_type: str
    data: bytes = field(repr=False)


class AttachmentDownloader:
    def __init__(self, email_service: "EmailService"):
        self.email_service = email_service

    def download(
        self, message_id: str, attachment_id: str, file_name: str, mime_type: str
    ) -> DownloadedAttachment:
        payload = self.email_service.get_attachment(message_id, attachment_id)
        return DownloadedAttachment(
            message_id=message_id,
            attachment_id=attachment_id,
            file_name=file_name,
            mime_type=mime_type,
            data=decode_base64url(payload.data),
        )
