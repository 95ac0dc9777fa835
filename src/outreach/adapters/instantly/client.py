from __future__ import annotations

from typing import Any

import requests
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from outreach.domain.errors import ExternalPlatformError

BASE_URL = "https://api.instantly.ai/api/v2"
PAGE_SIZE = 100
RETRY_STATUSES = {429, 500, 502, 503, 504}


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, ExternalPlatformError):
        return exc.status_code in RETRY_STATUSES
    return False


class InstantlyClient:
    """Sending-platform API. Every call here is safe to retry."""

    def __init__(
        self,
        api_key: str,
        base_url: str = BASE_URL,
        timeout: float = 30,
        max_attempts: int = 3,
    ) -> None:
        if not api_key:
            raise ExternalPlatformError("Instantly API key is required.")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.session = requests.Session()
        self.session.headers.update(
            {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        )

    def list_emails(self, campaign_id: str, status: str | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"campaign_id": campaign_id, "limit": PAGE_SIZE}
        if status:
            params["status"] = status

        emails: list[dict[str, Any]] = []
        offset = 0
        while True:
            if offset:
                params["offset"] = offset
            data = self._request("GET", "/emails", params=params)
            page = data.get("emails") or []
            for item in page:
                item.setdefault("campaign_id", campaign_id)
                emails.append(item)
            if len(page) < PAGE_SIZE:
                break
            offset += len(page)
        return emails

    def add_leads_to_campaign(self, campaign_id: str, leads: list[dict[str, Any]]) -> dict[str, Any]:
        return self._request("POST", f"/campaigns/{campaign_id}/leads", json={"leads": leads})

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
    ) -> dict[str, Any]:
        sender = retry(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )(self._send)
        try:
            return sender(method, path, params, json)
        except requests.RequestException as exc:
            raise ExternalPlatformError(f"Instantly network error: {exc}") from exc

    def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json: Any | None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        response = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
        if response.status_code >= 400:
            raise ExternalPlatformError(
                f"Instantly error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ExternalPlatformError("Expected JSON response from Instantly.") from exc
