"""
HTTP client for the remote invoice service.

Every response uses the envelope {"success", "data", "error": {"code",
"message"}}. Failures are mapped onto the engine's remote error types so the
sync worker can tell a retryable outage from a quota or a hard rejection.
"""

import json
import logging
from typing import Any

import requests

from core.errors import LimitReachedError, RemoteRejectedError, RemoteUnavailableError

logger = logging.getLogger(__name__)

LIMIT_REACHED_CODE = "LIMIT_REACHED"
_QUOTA_STATUSES = {402, 429}


class InvoiceApiClient:
    """Remote invoice service over HTTP with bearer-token auth."""

    def __init__(
        self,
        base_url: str,
        api_token: str,
        timeout: int = 10,
        session: requests.Session | None = None,
    ):
        """
        Args:
            base_url: Service root, e.g. https://app.example.com/api
            api_token: Session token of the current user
            timeout: Per-request timeout in seconds

        Raises:
            ValueError: If base_url or api_token is empty
        """
        if not base_url:
            raise ValueError("base_url is required")
        if not api_token:
            raise ValueError("api_token is required")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "Authorization": f"Bearer {api_token}",
            "Accept": "application/json",
        })

    def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Send a request and unwrap the envelope.

        Returns:
            The envelope's data field (may be None)

        Raises:
            RemoteUnavailableError: Connection failure, timeout or 5xx
            LimitReachedError: Quota exhausted
            RemoteRejectedError: Any other unsuccessful response
        """
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Invoice service unreachable ({method} {path}): {e}")
            raise RemoteUnavailableError(f"Connection failed: {e}")

        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError):
            body = {}
        if not isinstance(body, dict):
            # bare payload without the success/data envelope
            body = {"data": body}

        if response.ok and body.get("success", True):
            return body.get("data")

        error = body.get("error")
        if not isinstance(error, dict):
            error = {"message": error} if isinstance(error, str) else {}
        code = error.get("code", "")
        message = error.get("message") or response.reason or "Unknown error"

        if (
            response.status_code in _QUOTA_STATUSES
            or code == LIMIT_REACHED_CODE
            or "limit reached" in message.lower()
        ):
            logger.info(f"Invoice quota reached: {message}")
            raise LimitReachedError(message)

        if response.status_code >= 500:
            logger.warning(f"Invoice service error {response.status_code}: {message}")
            raise RemoteUnavailableError(f"Service error {response.status_code}: {message}")

        logger.error(f"Invoice service rejected {method} {path} ({response.status_code}): {message}")
        raise RemoteRejectedError(message, status_code=response.status_code)

    def upsert(self, invoice: dict[str, Any], items: list[dict[str, Any]]) -> None:
        """
        Create or replace an invoice and its items by id.

        Args:
            invoice: Invoice row (see core.wire.invoice_to_row)
            items: Item rows in display order
        """
        self._request(
            "PUT",
            f"/invoices/{invoice['id']}",
            json={"invoice": invoice, "items": items},
        )
        logger.info(f"Invoice {invoice['id']} upserted")

    def delete(self, invoice_id: str) -> None:
        """
        Delete an invoice by id. Deleting a missing invoice is not an error.
        """
        try:
            self._request("DELETE", f"/invoices/{invoice_id}")
        except RemoteRejectedError as e:
            if e.status_code != 404:
                raise
            logger.info(f"Invoice {invoice_id} already absent remotely")
            return
        logger.info(f"Invoice {invoice_id} deleted")

    def get_next_sequence(self, owner_id: str, date_key: str) -> int:
        """
        Next invoice sequence for this owner and day.

        Args:
            owner_id: Owner identifier
            date_key: Business date as YYYY-MM-DD

        Returns:
            1-based sequence number
        """
        data = self._request(
            "GET",
            "/invoices/next-sequence",
            params={"owner_id": owner_id, "date": date_key},
        )
        try:
            return int(data)
        except (TypeError, ValueError):
            raise RemoteRejectedError(f"Invalid sequence in response: {data!r}")

    def list(self, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """
        List invoices.

        Args:
            filters: Query parameters (e.g. {"from": "2025-11-01", "limit": 50})

        Returns:
            List of {"invoice": row, "items": [rows]}
        """
        data = self._request("GET", "/invoices", params=filters or {})
        return list(data or [])

    def is_limit_reached(self) -> bool:
        """Whether the current billing cycle's invoice quota is used up."""
        data = self._request("GET", "/subscriptions/current") or {}
        limit = data.get("invoice_limit")
        if limit is None:
            return False
        return int(data.get("current_month_count", 0)) >= int(limit)
