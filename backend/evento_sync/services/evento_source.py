from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Callable

import httpx
from jsonschema import ValidationError, validate

from evento_sync.enums import PageStatus
from evento_sync.errors import FatalFetchError, RetryableFetchError

logger = logging.getLogger(__name__)

EVENTO_CONNECT_TIMEOUT_S = 5.0
EVENTO_READ_TIMEOUT_S = 20.0
EVENTO_REQUEST_TIMEOUT_S = 25.0

Record = dict[str, Any]
FetchJsonFn = Callable[[str, dict[str, str], dict[str, str], float], Any]

_ROWS_SCHEMA: dict[str, Any] = {"type": "array"}
EVENTO_PAGE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "events": _ROWS_SCHEMA,
        "results": _ROWS_SCHEMA,
        "data": _ROWS_SCHEMA,
        "has_more": {"type": ["boolean", "null"]},
        "max_results_limit": {"type": ["integer", "null"], "minimum": 1},
    },
}


@dataclass(frozen=True)
class Producer:
    producer_id: str
    name: str


@dataclass(frozen=True)
class PageResult:
    status: PageStatus
    records: list[Record] = field(default_factory=list)
    has_more: bool | None = None
    batch_limit: int | None = None
    error_code: str | None = None
    message: str | None = None

    @classmethod
    def ok(cls, records: list[Record], *, has_more: bool | None = None, batch_limit: int | None = None) -> PageResult:
        return cls(status=PageStatus.OK, records=list(records), has_more=has_more, batch_limit=batch_limit)

    @classmethod
    def retryable(cls, message: str, *, error_code: str = "FETCH_RETRYABLE") -> PageResult:
        return cls(status=PageStatus.RETRYABLE, error_code=error_code, message=message)

    @classmethod
    def fatal(cls, message: str, *, error_code: str = "FETCH_FATAL") -> PageResult:
        return cls(status=PageStatus.FATAL, error_code=error_code, message=message)


def record_id(record: Any) -> int | None:
    if not isinstance(record, dict):
        return None
    try:
        value = int(record.get("id"))
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def _is_retryable_status(status_code: int) -> bool:
    return status_code in (408, 429) or 500 <= status_code <= 599


def classify_exception(exc: Exception) -> PageStatus:
    if isinstance(exc, httpx.HTTPStatusError):
        return PageStatus.RETRYABLE if _is_retryable_status(exc.response.status_code) else PageStatus.FATAL
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return PageStatus.RETRYABLE
    return PageStatus.FATAL


def default_json_fetcher(
    url: str,
    params: dict[str, str],
    headers: dict[str, str],
    timeout_s: float,
) -> Any:
    hard_cap = min(float(timeout_s), EVENTO_REQUEST_TIMEOUT_S)
    timeout = httpx.Timeout(
        timeout=hard_cap,
        connect=min(EVENTO_CONNECT_TIMEOUT_S, hard_cap),
        read=min(EVENTO_READ_TIMEOUT_S, hard_cap),
        write=hard_cap,
        pool=min(EVENTO_CONNECT_TIMEOUT_S, hard_cap),
    )
    response = httpx.get(url, params=params, headers=headers, timeout=timeout)
    response.raise_for_status()
    return response.json()


class EventSource(ABC):
    source_id: str

    @abstractmethod
    def list_records(
        self,
        *,
        producer_id: str,
        from_date: datetime,
        to_date: datetime,
        offset: int,
        limit: int,
    ) -> PageResult:
        """Return records of ``producer_id`` in ``[from_date, to_date]`` whose id is >= ``offset``."""
        raise NotImplementedError

    @abstractmethod
    def list_active_producers(self) -> list[Producer]:
        raise NotImplementedError


class HttpEventSource(EventSource):
    source_id = "EVENTO_HTTP"

    def __init__(
        self,
        *,
        base_url: str,
        api_token: str | None = None,
        fetch_json: FetchJsonFn | None = None,
        timeout_s: float = 20.0,
        user_agent: str = "EventoSync/1.0",
    ):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.fetch_json = fetch_json or default_json_fetcher
        self.timeout_s = timeout_s
        self.user_agent = user_agent

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def build_params(self, *, from_date: datetime, to_date: datetime, offset: int, limit: int) -> dict[str, str]:
        return {
            "from_date": from_date.isoformat(),
            "to_date": to_date.isoformat(),
            "from_key": str(offset),
            "max_results": str(limit),
        }

    def _extract_rows(self, payload: Any) -> list[Record]:
        if isinstance(payload, list):
            return [row for row in payload if isinstance(row, dict)]
        if isinstance(payload, dict):
            for key in ("events", "results", "data"):
                rows = payload.get(key)
                if isinstance(rows, list):
                    return [row for row in rows if isinstance(row, dict)]
        return []

    def _parse_page(self, payload: Any) -> PageResult:
        if not isinstance(payload, (dict, list)):
            return PageResult.fatal("Upstream JSON payload must be an object or list", error_code="EVENTO_BAD_PAYLOAD")
        if isinstance(payload, list):
            return PageResult.ok(self._extract_rows(payload))

        try:
            validate(instance=payload, schema=EVENTO_PAGE_SCHEMA)
        except ValidationError as exc:
            return PageResult.fatal(f"Upstream page does not match schema: {exc.message}", error_code="EVENTO_BAD_PAYLOAD")
        return PageResult.ok(
            self._extract_rows(payload),
            has_more=payload.get("has_more"),
            batch_limit=payload.get("max_results_limit"),
        )

    def list_records(
        self,
        *,
        producer_id: str,
        from_date: datetime,
        to_date: datetime,
        offset: int,
        limit: int,
    ) -> PageResult:
        url = f"{self.base_url}/producers/{producer_id}/events"
        params = self.build_params(from_date=from_date, to_date=to_date, offset=offset, limit=limit)
        try:
            payload = self.fetch_json(url, params, self._headers(), self.timeout_s)
        except (httpx.HTTPError, ValueError) as exc:
            status = classify_exception(exc)
            logger.warning(f"Evento request failed ({status.value}) for {producer_id} offset={offset}: {exc}")
            if status is PageStatus.RETRYABLE:
                return PageResult.retryable(str(exc))
            return PageResult.fatal(str(exc))
        return self._parse_page(payload)

    def list_active_producers(self) -> list[Producer]:
        url = f"{self.base_url}/producers"
        try:
            payload = self.fetch_json(url, {"active": "true"}, self._headers(), self.timeout_s)
        except (httpx.HTTPError, ValueError) as exc:
            if classify_exception(exc) is PageStatus.RETRYABLE:
                raise RetryableFetchError.build(f"Listing producers failed: {exc}") from exc
            raise FatalFetchError.build(f"Listing producers failed: {exc}") from exc

        rows = self._producer_rows(payload) if isinstance(payload, dict) else self._extract_rows(payload)
        producers: list[Producer] = []
        for row in rows:
            producer_id = row.get("id")
            if producer_id is None or str(producer_id).strip() == "":
                continue
            producers.append(Producer(producer_id=str(producer_id), name=str(row.get("name") or producer_id)))
        return producers

    def _producer_rows(self, payload: dict[str, Any]) -> list[Record]:
        rows = payload.get("producers")
        if isinstance(rows, list):
            return [row for row in rows if isinstance(row, dict)]
        return self._extract_rows(payload)
