"""Local-disk storage for attachments, laid out by sender-to-folder mappings."""

from __future__ import annotations

import datetime as dt
import logging
import os
import shutil
from typing import BinaryIO, Dict, Mapping, Optional

from ..domain import files as domain_files
from ..domain.models import (
    AttachmentContext,
    AttachmentStorageResult,
    FileNamingStrategy,
    StorageStatistics,
    StorageType,
)

logger = logging.getLogger(__name__)


class FileSystemPersistenceManager:
    def __init__(
        self,
        base_directory: str,
        sender_to_folder: Optional[Mapping[str, str]] = None,
        default_naming_strategy: FileNamingStrategy = FileNamingStrategy.ORIGINAL,
    ):
        self.base_directory = base_directory or os.getcwd()
        self.sender_to_folder: Dict[str, str] = dict(sender_to_folder or {})
        self.default_naming_strategy = default_naming_strategy

    def resolve_path(self, context: AttachmentContext) -> str:
        folder = domain_files.resolve_folder(
            context.vendor_email, context.suggested_folder, self.sender_to_folder
        )
        name = domain_files.generate_file_name(context, self.default_naming_strategy)
        full_path = os.path.join(self.base_directory, folder, name)
        root = os.path.realpath(self.base_directory)
        if os.path.commonpath([root, os.path.realpath(full_path)]) != root:
            raise ValueError(f"Resolved path {full_path} is outside {self.base_directory}")
        return full_path

    def save_attachment(self, context: AttachmentContext, data: bytes) -> AttachmentStorageResult:
        try:
            full_path = self.resolve_path(context)
            domain_files.ensure_dir(os.path.dirname(full_path))
            with open(full_path, "wb") as f:
                f.write(data)
        except Exception as e:
            logger.error("Failed to save attachment %s: %s", context.file_name, e)
            return AttachmentStorageResult(
                success=False, error=str(e), storage_type=StorageType.FILE_SYSTEM
            )
        logger.info("Saved attachment: %s (%d bytes)", full_path, len(data))
        return AttachmentStorageResult(
            success=True,
            storage_reference=full_path,
            bytes_written=len(data),
            storage_type=StorageType.FILE_SYSTEM,
        )

    def save_attachment_stream(
        self, context: AttachmentContext, stream: BinaryIO
    ) -> AttachmentStorageResult:
        try:
            full_path = self.resolve_path(context)
            domain_files.ensure_dir(os.path.dirname(full_path))
            with open(full_path, "wb") as f:
                shutil.copyfileobj(stream, f, 65536)
                written = f.tell()
        except Exception as e:
            logger.error("Failed to save attachment stream %s: %s", context.file_name, e)
            return AttachmentStorageResult(
                success=False, error=str(e), storage_type=StorageType.FILE_SYSTEM
            )
        logger.info("Saved attachment stream: %s (%d bytes)", full_path, written)
        return AttachmentStorageResult(
            success=True,
            storage_reference=full_path,
            bytes_written=written,
            storage_type=StorageType.FILE_SYSTEM,
        )

    def get_attachment(self, storage_reference: str) -> bytes:
        with open(storage_reference, "rb") as f:
            return f.read()

    def open_attachment_stream(self, storage_reference: str) -> BinaryIO:
        return open(storage_reference, "rb")

    def exists(self, storage_reference: str) -> bool:
        return os.path.isfile(storage_reference)

    def delete_attachment(self, storage_reference: str) -> bool:
        if not os.path.isfile(storage_reference):
            return False
        try:
            os.remove(storage_reference)
        except OSError as e:
            logger.error("Failed to delete attachment %s: %s", storage_reference, e)
            return False
        logger.info("Deleted attachment: %s", storage_reference)
        return True

    def get_statistics(self) -> StorageStatistics:
        stats = StorageStatistics()
        for vendor_email, folder in self.sender_to_folder.items():
            folder_path = os.path.join(self.base_directory, folder)
            if not os.path.isdir(folder_path):
                continue
            for root, _dirs, names in os.walk(folder_path):
                for name in names:
                    path = os.path.join(root, name)
                    try:
                        st = os.stat(path)
                    except OSError:
                        continue
                    stats.total_files += 1
                    stats.total_size_bytes += st.st_size
                    stats.files_by_vendor[vendor_email] = stats.files_by_vendor.get(vendor_email, 0) + 1
                    mtime = dt.datetime.fromtimestamp(st.st_mtime)
                    if stats.oldest_file is None or mtime < stats.oldest_file:
                        stats.oldest_file = mtime
                    if stats.newest_file is None or mtime > stats.newest_file:
                        stats.newest_file = mtime
        return stats
