"""
Tooling API Connection

Thin async client for the platform's tooling REST API. Every remote call made
by the package lifecycle goes through one of these methods:

- query / single_record_query  (GET  .../tooling/query?q=...)
- retrieve                     (GET  .../tooling/sobjects/{type}/{id})
- create                       (POST .../tooling/sobjects/{type})
- update                       (PATCH .../tooling/sobjects/{type}/{id})

Non-2xx responses become RemoteRequestError carrying the platform error code,
except field-level update failures, which are returned as an unsuccessful
SaveResult so callers can combine every field error into one message.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .config import LifecycleSettings
from .errors import RemoteRequestError
from .models import SaveResult

logger = logging.getLogger("tooling_connection")

DEFAULT_API_VERSION = "59.0"
DEFAULT_REQUEST_TIMEOUT = 30.0


@dataclass
class QueryResult:
    """Records returned by a query, with the attributes envelope stripped."""
    records: List[Dict[str, Any]] = field(default_factory=list)
    total_size: int = 0
    done: bool = True


def _strip_attributes(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _strip_attributes(v) for k, v in value.items() if k != "attributes"}
    if isinstance(value, list):
        return [_strip_attributes(v) for v in value]
    return value


def _parse_errors(response: httpx.Response) -> List[Dict[str, Any]]:
    """Extract the platform's error list from an error response body."""
    try:
        body = response.json()
    except ValueError:
        return [{"errorCode": f"HTTP_{response.status_code}", "message": response.text or response.reason_phrase}]
    if isinstance(body, dict):
        body = body.get("errors") or [body]
    if not isinstance(body, list):
        body = [{"message": str(body)}]
    return [error if isinstance(error, dict) else {"message": str(error)} for error in body]


class ToolingConnection:
    """
    Async connection to the tooling API of one org.

    Can be used as an async context manager; an injected httpx client is
    left open on exit.
    """

    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.instance_url = instance_url.rstrip("/")
        self.api_version = api_version
        self.base_path = f"/services/data/v{api_version}/tooling"
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.instance_url, timeout=timeout)

    @classmethod
    def from_settings(
        cls,
        instance_url: str,
        access_token: str,
        settings: LifecycleSettings,
        client: Optional[httpx.AsyncClient] = None
    ) -> "ToolingConnection":
        return cls(
            instance_url,
            access_token,
            api_version=settings.api_version,
            timeout=settings.request_timeout,
            client=client,
        )

    async def __aenter__(self) -> "ToolingConnection":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, headers=self.headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {url} failed: {e}")
            raise RemoteRequestError(code="HTTP_ERROR", message=str(e) or type(e).__name__) from e

    def _raise_for_error(self, response: httpx.Response):
        if response.status_code < 400:
            return
        errors = _parse_errors(response)
        first = errors[0] if errors else {}
        code = first.get("errorCode") or f"HTTP_{response.status_code}"
        message = "; ".join(str(e.get("message", "")) for e in errors) or response.reason_phrase
        logger.debug(f"Remote error {code} ({response.status_code}): {message}")
        raise RemoteRequestError(code=code, message=message, status_code=response.status_code)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def query(self, soql: str) -> QueryResult:
        """Run a tooling query, following nextRecordsUrl until done."""
        logger.debug(f"Tooling query: {soql}")
        response = await self._send("GET", f"{self.base_path}/query/", params={"q": soql})
        self._raise_for_error(response)
        body = response.json()
        records = list(body.get("records", []))

        while not body.get("done", True) and body.get("nextRecordsUrl"):
            response = await self._send("GET", body["nextRecordsUrl"])
            self._raise_for_error(response)
            body = response.json()
            records.extend(body.get("records", []))

        return QueryResult(
            records=_strip_attributes(records),
            total_size=body.get("totalSize", len(records)),
            done=True
        )

    async def single_record_query(self, soql: str) -> Dict[str, Any]:
        """Run a query that must match exactly one record."""
        result = await self.query(soql)
        if not result.records:
            raise RemoteRequestError(code="NO_RECORDS", message=f"No records found for query: {soql}")
        if len(result.records) > 1:
            raise RemoteRequestError(
                code="MULTIPLE_RECORDS",
                message=f"Expected one record but found {len(result.records)}"
            )
        return result.records[0]

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    async def retrieve(self, sobject: str, record_id: str) -> Dict[str, Any]:
        response = await self._send("GET", f"{self.base_path}/sobjects/{sobject}/{record_id}")
        self._raise_for_error(response)
        return _strip_attributes(response.json())

    async def create(self, sobject: str, record: Dict[str, Any]) -> SaveResult:
        """Insert a record. A rejected insert raises RemoteRequestError."""
        logger.info(f"Creating {sobject}")
        response = await self._send("POST", f"{self.base_path}/sobjects/{sobject}/", json=record)
        self._raise_for_error(response)
        body = response.json()
        return SaveResult(
            id=body.get("id"),
            success=body.get("success", True),
            errors=[str(e) for e in body.get("errors", [])]
        )

    async def update(self, sobject: str, record: Dict[str, Any]) -> SaveResult:
        """
        Update fields of a record. record must contain 'Id'.

        Field-level failures (HTTP 400) come back as SaveResult(success=False).
        """
        record_id = record["Id"]
        fields = {k: v for k, v in record.items() if k != "Id"}
        logger.info(f"Updating {sobject} {record_id}: {sorted(fields)}")
        response = await self._send(
            "PATCH", f"{self.base_path}/sobjects/{sobject}/{record_id}", json=fields
        )
        if response.status_code == 400:
            errors = [str(e.get("message", "")) for e in _parse_errors(response)]
            return SaveResult(id=record_id, success=False, errors=errors)
        self._raise_for_error(response)
        return SaveResult(id=record_id, success=True)
