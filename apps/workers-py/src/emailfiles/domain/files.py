"""Naming and placement rules for persisted attachments."""

from __future__ import annotations

import os
import pathlib
import re
from typing import Mapping, Optional

from .models import AttachmentContext, FileNamingStrategy, vendor_name_from_email

# characters no common filesystem accepts in a name, plus whitespace
_INVALID_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f\s]+')
_PATH_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]+')


def ensure_dir(path: str) -> str:
    pathlib.Path(path).mkdir(parents=True, exist_ok=True)
    return path


def sanitize_filename(name: str) -> str:
    fragments = [frag for frag in _INVALID_CHARS.split(name or "") if frag]
    return "_".join(fragments).rstrip(".")


def safe_file_name(name: str, default: str = "attachment") -> str:
    """Reduce a sender-supplied name to a single path component."""
    base = os.path.basename((name or "").replace("\\", "/")).strip()
    base = _PATH_CHARS.sub("_", base)
    if not base.strip("."):
        return default
    return base


def resolve_folder(
    vendor_email: str,
    suggested_folder: Optional[str],
    sender_to_folder: Mapping[str, str],
) -> str:
    if suggested_folder and suggested_folder.strip():
        return suggested_folder
    mapped = sender_to_folder.get(vendor_email)
    if mapped:
        return mapped
    return f"invoices/{vendor_name_from_email(vendor_email)}"


def generate_file_name(
    context: AttachmentContext,
    default_strategy: FileNamingStrategy = FileNamingStrategy.ORIGINAL,
) -> str:
    strategy = context.naming_strategy or default_strategy
    name = safe_file_name(context.file_name)
    base, ext = os.path.splitext(name)
    if strategy == FileNamingStrategy.WITH_TIMESTAMP:
        return f"{base}_{context.email_date:%Y%m%d_%H%M%S}{ext}"
    if strategy == FileNamingStrategy.WITH_SENDER:
        return f"{sanitize_filename(context.vendor_name)}_{base}{ext}"
    if strategy == FileNamingStrategy.WITH_DATE_AND_SENDER:
        return f"{context.email_date:%Y%m%d}_{sanitize_filename(context.vendor_name)}_{base}{ext}"
    return name
