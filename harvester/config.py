"""Configuration management for the compliance attachment harvester."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal, Sequence

from dotenv import load_dotenv
from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so BaseSettings can pick values up seamlessly.
load_dotenv()


def _split_list(value: str | Sequence[str] | None, coerce_lower: bool = True) -> list[str]:
    """Turn delimiter-separated env strings into cleaned lists."""
    if value is None:
        return []
    if isinstance(value, str):
        items = re.split(r"[;,]", value)
    else:
        items = list(value)
    cleaned: list[str] = []
    for item in items:
        trimmed = item.strip()
        if not trimmed:
            continue
        cleaned.append(trimmed.lower() if coerce_lower else trimmed)
    return cleaned


class Settings(BaseSettings):
    """App configuration derived from environment variables."""

    compliance_tenant_id: str | None = Field(None, alias="COMPLIANCE_TENANT_ID")
    compliance_client_id: str | None = Field(None, alias="COMPLIANCE_CLIENT_ID")
    compliance_client_secret: str | None = Field(None, alias="COMPLIANCE_CLIENT_SECRET")
    compliance_auth_mode: Literal["client_credentials", "device_code"] = Field(
        "device_code", alias="COMPLIANCE_AUTH_MODE"
    )
    compliance_authority: str | None = Field(None, alias="COMPLIANCE_AUTHORITY")
    compliance_api_base: HttpUrl = Field(
        "https://ps.compliance.protection.outlook.com/adminapi/beta",
        alias="COMPLIANCE_API_BASE",
    )
    compliance_scopes_raw: str = Field(
        "https://ps.compliance.protection.outlook.com/.default", alias="COMPLIANCE_SCOPES"
    )
    compliance_token_cache: Path = Field(
        Path("data/msal_token_cache.bin"), alias="COMPLIANCE_TOKEN_CACHE"
    )
    compliance_request_timeout: int = Field(60, alias="COMPLIANCE_REQUEST_TIMEOUT")

    mailbox: str | None = Field(None, alias="HARVEST_MAILBOX")
    base_dir: Path = Field(Path("exports"), alias="HARVEST_BASE_DIR")
    extension_filter_raw: str = Field("", alias="HARVEST_EXTENSION_FILTER")
    naming_mode: Literal["subject", "attachment"] = Field("subject", alias="HARVEST_NAMING_MODE")
    on_extraction_error: Literal["abort", "continue"] = Field(
        "abort", alias="HARVEST_ON_EXTRACTION_ERROR"
    )
    write_manifest: bool = Field(True, alias="HARVEST_WRITE_MANIFEST")

    poll_interval_seconds: float = Field(5.0, alias="POLL_INTERVAL_SECONDS")
    poll_timeout_seconds: float | None = Field(None, alias="POLL_TIMEOUT_SECONDS")

    transfer_tool_path: Path = Field(
        Path(r"C:\Program Files\UnifiedExportTool\microsoft.office.client.discovery.unifiedexporttool.exe"),
        alias="TRANSFER_TOOL_PATH",
    )
    transfer_poll_interval_seconds: float = Field(5.0, alias="TRANSFER_POLL_INTERVAL_SECONDS")
    archive_extension: str = Field(".pst", alias="ARCHIVE_EXTENSION")

    mount_settle_seconds: float = Field(10.0, alias="OUTLOOK_MOUNT_SETTLE_SECONDS")
    outlook_quit_on_close: bool = Field(False, alias="OUTLOOK_QUIT_ON_CLOSE")
    trash_folder_name: str = Field("Deleted Items", alias="OUTLOOK_TRASH_FOLDER")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _validate_authentication(self):
        if self.compliance_auth_mode == "client_credentials" and self.compliance_client_id:
            if not self.compliance_client_secret:
                raise ValueError(
                    "COMPLIANCE_CLIENT_SECRET is required for client_credentials mode."
                )
            if not (self.compliance_tenant_id or self.compliance_authority):
                raise ValueError(
                    "COMPLIANCE_TENANT_ID or COMPLIANCE_AUTHORITY must be provided for client_credentials mode."
                )
        return self

    @field_validator(
        "compliance_tenant_id",
        "compliance_client_id",
        "compliance_client_secret",
        "compliance_authority",
        "mailbox",
        "poll_timeout_seconds",
        mode="before",
    )
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("archive_extension", mode="before")
    @classmethod
    def _normalize_extension(cls, value):
        if isinstance(value, str):
            stripped = value.strip().lower()
            if stripped and not stripped.startswith("."):
                stripped = f".{stripped}"
            return stripped or ".pst"
        return value

    @property
    def authority_url(self) -> str:
        if self.compliance_authority:
            return self.compliance_authority.rstrip("/")
        if self.compliance_tenant_id:
            return f"https://login.microsoftonline.com/{self.compliance_tenant_id}"
        return "https://login.microsoftonline.com/organizations"

    @property
    def compliance_scopes(self) -> list[str]:
        """Scopes requested for the compliance admin API."""
        scopes = _split_list(self.compliance_scopes_raw, coerce_lower=False)
        return scopes or ["https://ps.compliance.protection.outlook.com/.default"]

    @property
    def extension_filter(self) -> list[str]:
        return _split_list(self.extension_filter_raw, coerce_lower=True)
