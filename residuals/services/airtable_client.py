"""
Airtable REST client for the payouts table.

Only the three calls the sync needs: paged list, batch create, batch update.
Non-2xx responses surface as ExternalServiceError carrying the status and body.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from residuals.core.config import Settings, get_settings
from residuals.core.errors import ExternalServiceError

logger = logging.getLogger(__name__)

MAX_RECORDS_PER_WRITE = 10


class AirtableClient:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.settings.airtable_api_key)

    @property
    def table_url(self) -> str:
        s = self.settings
        return f"{s.airtable_api_url.rstrip('/')}/{s.airtable_base_id}/{s.airtable_table_id}"

    def _client(self) -> httpx.Client:
        if not self.configured:
            raise ExternalServiceError("Airtable API key not configured")
        return httpx.Client(
            headers={
                "Authorization": f"Bearer {self.settings.airtable_api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.settings.airtable_timeout_seconds,
            transport=self._transport,
        )

    @staticmethod
    def _check(resp: httpx.Response, action: str) -> Dict[str, Any]:
        if resp.status_code >= 400:
            logger.error(
                "airtable request failed",
                extra={"action": action, "status_code": resp.status_code, "body": resp.text[:500]},
            )
            raise ExternalServiceError(resp.text, status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            logger.error(
                "airtable returned a non-JSON body",
                extra={"action": action, "status_code": resp.status_code, "body": resp.text[:500]},
            )
            raise ExternalServiceError(
                f"Airtable returned an unreadable response: {e}", status_code=resp.status_code
            ) from e

    # ---------------------------
    # READ
    # ---------------------------

    def list_records(self, *, filter_formula: Optional[str] = None) -> List[Dict[str, Any]]:
        """Follow the offset cursor until the table is exhausted."""
        records: List[Dict[str, Any]] = []
        offset: Optional[str] = None
        with self._client() as client:
            while True:
                params: Dict[str, Any] = {"pageSize": self.settings.sync_page_size}
                if filter_formula:
                    params["filterByFormula"] = filter_formula
                if offset:
                    params["offset"] = offset
                try:
                    resp = client.get(self.table_url, params=params)
                except httpx.HTTPError as e:
                    raise ExternalServiceError(f"Airtable fetch error: {e}") from e
                data = self._check(resp, "list")
                records.extend(data.get("records") or [])
                offset = data.get("offset")
                if not offset:
                    break
        return records

    # ---------------------------
    # WRITE (one batch per call)
    # ---------------------------

    def create_records(self, fields_list: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self._write("POST", [{"fields": f} for f in fields_list])

    def update_records(self, updates: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """updates: [{"id": recXXX, "fields": {...}}]"""
        return self._write("PATCH", list(updates))

    def _write(self, method: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not records:
            return []
        if len(records) > MAX_RECORDS_PER_WRITE:
            raise ValueError(f"Airtable accepts at most {MAX_RECORDS_PER_WRITE} records per request")
        with self._client() as client:
            try:
                resp = client.request(method, self.table_url, json={"records": records})
            except httpx.HTTPError as e:
                raise ExternalServiceError(f"Airtable write error: {e}") from e
        return self._check(resp, method.lower()).get("records") or []
