"""Compliance admin API helper for search and export cmdlets."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import msal
import requests
from requests import Response

from .config import Settings
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class ComplianceClient:
    """Thin wrapper that authenticates with MSAL and invokes compliance cmdlets."""

    def __init__(self, settings: Settings) -> None:
        if not settings.compliance_client_id:
            raise ConfigurationError("COMPLIANCE_CLIENT_ID is required to reach the compliance service.")
        self.settings = settings
        self.session = requests.Session()
        self.scopes = settings.compliance_scopes
        self.auth_mode = settings.compliance_auth_mode
        self.authority = settings.authority_url
        self.base_url = str(settings.compliance_api_base).rstrip("/")
        self._token_cache = None

        if self.auth_mode == "client_credentials":
            self.app = msal.ConfidentialClientApplication(
                client_id=settings.compliance_client_id,
                client_credential=settings.compliance_client_secret,
                authority=self.authority,
            )
        else:
            token_cache = msal.SerializableTokenCache()
            cache_path = settings.compliance_token_cache
            if cache_path.exists():
                token_cache.deserialize(cache_path.read_text())
            self._token_cache = token_cache
            self.app = msal.PublicClientApplication(
                client_id=settings.compliance_client_id,
                authority=self.authority,
                token_cache=token_cache,
            )

    # Searches -----------------------------------------------------------

    def list_searches(self) -> list[dict[str, Any]]:
        return self.invoke("Get-ComplianceSearch")

    def get_search(self, name: str) -> dict[str, Any] | None:
        rows = self.invoke("Get-ComplianceSearch", {"Identity": name})
        return rows[0] if rows else None

    def create_search(self, name: str, query: str, mailbox: str | None) -> dict[str, Any] | None:
        parameters: dict[str, Any] = {"Name": name, "ContentMatchQuery": query}
        parameters["ExchangeLocation"] = [mailbox] if mailbox else ["All"]
        rows = self.invoke("New-ComplianceSearch", parameters)
        return rows[0] if rows else None

    def start_search(self, name: str) -> None:
        self.invoke("Start-ComplianceSearch", {"Identity": name})

    def remove_search(self, name: str) -> None:
        self.invoke("Remove-ComplianceSearch", {"Identity": name, "Confirm": False})

    # Exports ------------------------------------------------------------

    def create_export(self, search_name: str) -> dict[str, Any] | None:
        rows = self.invoke(
            "New-ComplianceSearchAction",
            {
                "SearchName": search_name,
                "Export": True,
                "Format": "FxStream",
                "ExchangeArchiveFormat": "SinglePst",
                "Scope": "IndexedItemsOnly",
                "Confirm": False,
            },
        )
        return rows[0] if rows else None

    def get_export(self, export_name: str) -> dict[str, Any] | None:
        rows = self.invoke(
            "Get-ComplianceSearchAction",
            {"Identity": export_name, "IncludeCredential": True, "Details": True},
        )
        return rows[0] if rows else None

    # Transport ----------------------------------------------------------

    def invoke(self, cmdlet: str, parameters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run one cmdlet through the admin InvokeCommand endpoint."""
        url = f"{self.base_url}/InvokeCommand"
        body = {"CmdletInput": {"CmdletName": cmdlet, "Parameters": parameters or {}}}
        logger.debug("Invoking %s with %s", cmdlet, sorted((parameters or {}).keys()))
        response = self._post(url, body)
        payload = response.json() if response.content else {}
        value = payload.get("value", []) if isinstance(payload, dict) else []
        return value if isinstance(value, list) else [value]

    def _post(self, url: str, body: dict) -> Response:
        headers = {"Authorization": f"Bearer {self._acquire_token()}"}
        resp = self.session.post(
            url, headers=headers, json=body, timeout=self.settings.compliance_request_timeout
        )
        if resp.status_code >= 400:
            logger.error("Compliance request failed (%s): %s", resp.status_code, resp.text)
            resp.raise_for_status()
        return resp

    def _acquire_token(self) -> str:
        if self.auth_mode == "client_credentials":
            return self._acquire_token_client_credentials()
        return self._acquire_token_device_flow()

    def _acquire_token_client_credentials(self) -> str:
        result = self.app.acquire_token_silent(self.scopes, account=None)
        if not result:
            result = self.app.acquire_token_for_client(scopes=self.scopes)
        if "access_token" not in result:
            raise ConfigurationError(
                f"Unable to obtain compliance token: {result.get('error_description')}"
            )
        return result["access_token"]

    def _acquire_token_device_flow(self) -> str:
        accounts = self.app.get_accounts()
        result = None
        if accounts:
            result = self.app.acquire_token_silent(self.scopes, account=accounts[0])
        if not result:
            flow = self.app.initiate_device_flow(scopes=self.scopes)
            if "user_code" not in flow:
                raise ConfigurationError(f"Unable to start device code flow: {flow}")
            logger.info(flow.get("message"))
            result = self.app.acquire_token_by_device_flow(flow)
        if "access_token" not in result:
            raise ConfigurationError(
                f"Unable to obtain compliance token: {result.get('error_description')}"
            )
        self._persist_token_cache()
        return result["access_token"]

    def _persist_token_cache(self) -> None:
        if not self._token_cache or not self._token_cache.has_state_changed:
            return
        cache_path: Path = self.settings.compliance_token_cache
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(self._token_cache.serialize())
