"""Remote store client — thin wrapper over a PostgREST-style table API.

Pure I/O, no policy. Every call either returns decoded rows or raises:

    RemoteConnectivityError  the network is down or the request timed out
    RemoteRejectedError      the backend answered with an error status
"""

import logging
import threading
from typing import Any, Optional

import httpx

from field_report.config import Config

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Base exception for remote store operations."""


class RemoteConnectivityError(RemoteError):
    """The remote store could not be reached."""


class RemoteRejectedError(RemoteError):
    """The remote store returned an explicit error response."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


def _filter_value(value: Any) -> str:
    """Encode an equality filter the way PostgREST expects it."""
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


class RemoteStoreClient:
    """Table-shaped access to the cloud system of record."""

    def __init__(self, base_url: str | None = None,
                 api_key: str | None = None,
                 timeout: float | None = None,
                 transport: httpx.BaseTransport | None = None):
        self.base_url = (base_url or Config.SUPABASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else Config.SUPABASE_ANON_KEY
        self.timeout = timeout if timeout is not None else Config.REMOTE_TIMEOUT
        self._client = httpx.Client(
            base_url=f"{self.base_url}/rest/v1",
            headers=self._auth_headers(),
            timeout=self.timeout,
            transport=transport,
        )

    def _auth_headers(self) -> dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def close(self):
        self._client.close()

    # ── Request plumbing ───────────────────────────────────────

    def _request(self, method: str, table: str,
                 params: dict | None = None,
                 json_body: Any = None,
                 prefer: str | None = None) -> Any:
        headers = {"Prefer": prefer} if prefer else {}
        try:
            response = self._client.request(
                method, f"/{table}", params=params, json=json_body,
                headers=headers,
            )
        except httpx.TransportError as e:
            # Connect failures, DNS failures and timeouts all land here
            raise RemoteConnectivityError(
                f"{method} {table} failed: {e}"
            ) from e

        if response.is_error:
            message = response.text
            try:
                body = response.json()
                if isinstance(body, dict):
                    message = body.get("message") or message
            except ValueError:
                pass
            raise RemoteRejectedError(
                f"{method} {table} rejected ({response.status_code}): {message}",
                response.status_code,
            )

        if not response.content:
            return []
        return response.json()

    @staticmethod
    def _filter_params(filters: dict | None) -> dict:
        return {col: _filter_value(val) for col, val in (filters or {}).items()}

    # ── Table operations ───────────────────────────────────────

    def select(self, table: str, filters: dict | None = None,
               columns: str = "*", order: str | None = None,
               limit: int | None = None) -> list[dict]:
        """Fetch rows matching every equality filter.

        `order` is "column" or "column.desc".
        """
        params = self._filter_params(filters)
        params["select"] = columns
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        return self._request("GET", table, params=params) or []

    def select_one(self, table: str, filters: dict,
                   columns: str = "*") -> Optional[dict]:
        rows = self.select(table, filters, columns=columns, limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, rows: dict | list[dict]) -> list[dict]:
        return self._request(
            "POST", table, json_body=rows, prefer="return=representation",
        )

    def upsert(self, table: str, rows: dict | list[dict],
               on_conflict: str, ignore_duplicates: bool = False) -> list[dict]:
        """Insert-or-update in one conflict-resolving write.

        `on_conflict` names the unique columns, e.g. "project_id,report_date".
        With `ignore_duplicates` an existing row is left untouched and the
        first writer keeps it.
        """
        resolution = "ignore-duplicates" if ignore_duplicates else "merge-duplicates"
        return self._request(
            "POST", table,
            params={"on_conflict": on_conflict},
            json_body=rows,
            prefer=f"resolution={resolution},return=representation",
        )

    def update(self, table: str, values: dict, filters: dict) -> list[dict]:
        return self._request(
            "PATCH", table,
            params=self._filter_params(filters),
            json_body=values,
            prefer="return=representation",
        )

    def delete(self, table: str, filters: dict) -> list[dict]:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        return self._request(
            "DELETE", table,
            params=self._filter_params(filters),
            prefer="return=representation",
        )

    def delete_nowait(self, table: str, filters: dict) -> threading.Thread:
        """Fire a delete on a daemon thread and return without waiting.

        Delivery is best-effort: failures are logged, never raised.
        """
        def _send():
            try:
                self.delete(table, filters)
            except RemoteError as e:
                logger.warning("Background delete on %s failed: %s", table, e)

        thread = threading.Thread(
            target=_send, name=f"delete-{table}", daemon=True,
        )
        thread.start()
        return thread
