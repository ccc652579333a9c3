"""
Application settings loaded from a JSON file (``app.json`` by default).

Shape::

    {
      "applicationName": "InvoiceDownloader",
      "googleCredentials": {"Values": {"credentialsLocation": "credentials.json",
                                       "tokenDestination": "token.json"}},
      "emailsAttachmentsDestination": {"Values": {"billing@acme.com": "invoices/acme"}},
      "storage": {"defaultStorageType": "file-system",
                  "fileSystem": {"baseDirectory": "./invoices",
                                 "defaultNamingStrategy": "with-date-and-sender"}}
    }

Environment overrides: EMAILFILES_BASE_DIR, EMAILFILES_CREDENTIALS, EMAILFILES_TOKEN.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Type, TypeVar

from .domain.models import FileNamingStrategy, StorageType

DEFAULT_APP_NAME = "InvoiceDownloader"
DEFAULT_CONFIG_PATH = "app.json"

E = TypeVar("E", bound=Enum)


class ConfigurationError(ValueError):
    pass


@dataclass(frozen=True)
class GoogleCredentialsSettings:
    credentials_location: str = "credentials.json"
    token_destination: str = "token.json"


@dataclass(frozen=True)
class FileSystemStorageSettings:
    base_directory: str = "./invoices"
    default_naming_strategy: FileNamingStrategy = FileNamingStrategy.WITH_DATE_AND_SENDER


@dataclass(frozen=True)
class StorageSettings:
    default_storage_type: StorageType = StorageType.FILE_SYSTEM
    file_system: FileSystemStorageSettings = field(default_factory=FileSystemStorageSettings)


@dataclass(frozen=True)
class AppSettings:
    application_name: str = DEFAULT_APP_NAME
    google_credentials: GoogleCredentialsSettings = field(default_factory=GoogleCredentialsSettings)
    sender_to_folder: Dict[str, str] = field(default_factory=dict)
    storage: StorageSettings = field(default_factory=StorageSettings)


def _enum_value(enum_cls: Type[E], raw: Optional[str], default: E) -> E:
    if raw is None or raw == "":
        return default
    key = str(raw).strip()
    for member in enum_cls:
        if key.lower() in {member.value, member.name.lower()}:
            return member
    # PascalCase names as written by older configs, e.g. "WithDateAndSender"
    normalized = key.replace("-", "").replace("_", "").lower()
    for member in enum_cls:
        if member.name.replace("_", "").lower() == normalized:
            return member
    raise ConfigurationError(f"Unknown {enum_cls.__name__} value: {raw}")


def _values(section: object) -> Dict[str, str]:
    if not isinstance(section, dict):
        return {}
    values = section.get("Values", section)
    if not isinstance(values, dict):
        return {}
    return {str(k): str(v) for k, v in values.items()}


def settings_from_dict(data: Dict) -> AppSettings:
    creds = _values(data.get("googleCredentials"))
    storage_raw = data.get("storage") or {}
    fs_raw = storage_raw.get("fileSystem") or {}
    fs_defaults = FileSystemStorageSettings()

    file_system = FileSystemStorageSettings(
        base_directory=os.environ.get(
            "EMAILFILES_BASE_DIR", fs_raw.get("baseDirectory") or fs_defaults.base_directory
        ),
        default_naming_strategy=_enum_value(
            FileNamingStrategy,
            fs_raw.get("defaultNamingStrategy"),
            fs_defaults.default_naming_strategy,
        ),
    )
    storage = StorageSettings(
        default_storage_type=_enum_value(
            StorageType, storage_raw.get("defaultStorageType"), StorageType.FILE_SYSTEM
        ),
        file_system=file_system,
    )
    google = GoogleCredentialsSettings(
        credentials_location=os.environ.get(
            "EMAILFILES_CREDENTIALS", creds.get("credentialsLocation", "credentials.json")
        ),
        token_destination=os.environ.get(
            "EMAILFILES_TOKEN", creds.get("tokenDestination", "token.json")
        ),
    )
    return AppSettings(
        application_name=data.get("applicationName") or DEFAULT_APP_NAME,
        google_credentials=google,
        sender_to_folder=_values(data.get("emailsAttachmentsDestination")),
        storage=storage,
    )


class ConfigurationService:
    """Reads and validates settings; the result is treated as read-only."""

    def __init__(self, path: str = DEFAULT_CONFIG_PATH):
        self.path = Path(path)

    def load_configuration(self) -> AppSettings:
        if not self.path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.path}")
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"{self.path} must contain a JSON object")
        settings = settings_from_dict(data)
        self.validate_configuration(settings)
        return settings

    def validate_configuration(self, settings: AppSettings) -> None:
        if not settings.application_name.strip():
            raise ConfigurationError("Application name is required.")
        if not settings.google_credentials.credentials_location.strip():
            raise ConfigurationError("Google credentials location is required.")
        if not settings.google_credentials.token_destination.strip():
            raise ConfigurationError("Token destination is required.")
        if not settings.sender_to_folder:
            raise ConfigurationError("At least one email-to-folder mapping is required.")
        if settings.storage.default_storage_type != StorageType.FILE_SYSTEM:
            raise ConfigurationError(
                f"Storage type {settings.storage.default_storage_type.value} not yet implemented."
            )


class StaticConfigurationService(ConfigurationService):
    """Serves settings built in code (embedding, tests)."""

    def __init__(self, settings: AppSettings):
        super().__init__(path="<memory>")
        self._settings = settings

    def load_configuration(self) -> AppSettings:
        self.validate_configuration(self._settings)
        return self._settings
