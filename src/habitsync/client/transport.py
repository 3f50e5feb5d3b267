"""HTTP client for the remote habit service."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import aiohttp
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from ..errors import TransportError, error_for_status
from ..models import (
    DashboardRead,
    EntryToggle,
    HabitCreate,
    HabitEntryRead,
    HabitRead,
    HabitUpdate,
)

logger = logging.getLogger(__name__)

USER_HEADER = "X-HabitSync-User"

_HABITS = TypeAdapter(list[HabitRead])
_ENTRIES = TypeAdapter(list[HabitEntryRead])


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a (possibly conditional) read.

    ``payload`` is ``None`` when the service answered 304 Not Modified.
    """

    payload: Any
    etag: Optional[str] = None
    not_modified: bool = False


class RemoteDataService(Protocol):
    """Operations the client core needs from the remote service."""

    async def list_habits(self, *, etag: Optional[str] = None) -> FetchResult:
        ...

    async def list_entries(self, *, etag: Optional[str] = None) -> FetchResult:
        ...

    async def list_habit_entries(
        self, habit_id: str, *, etag: Optional[str] = None
    ) -> FetchResult:
        ...

    async def dashboard(self, *, etag: Optional[str] = None) -> FetchResult:
        ...

    async def create_habit(self, payload: HabitCreate) -> HabitRead:
        ...

    async def update_habit(self, habit_id: str, payload: HabitUpdate) -> HabitRead:
        ...

    async def delete_habit(self, habit_id: str) -> None:
        ...

    async def toggle_entry(self, habit_id: str, payload: EntryToggle) -> HabitEntryRead:
        ...


class HabitApiClient:
    """aiohttp implementation of :class:`RemoteDataService`.

    The session is created lazily and owned by the client unless one is passed
    in. Every failure surfaces as a :class:`~habitsync.errors.HabitSyncError`.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        *,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "HabitApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        etag: Optional[str] = None,
    ) -> tuple[int, Any, Optional[str]]:
        """Send one request and return ``(status, body, etag)``.

        Non-2xx responses other than 304 raise the matching error.
        """

        headers = {USER_HEADER: self.user_id, "Accept": "application/json"}
        if etag:
            headers["If-None-Match"] = etag
        url = f"{self.base_url}{path}"
        session = await self._get_session()
        try:
            async with session.request(method, url, json=json, headers=headers) as response:
                if response.status == 304:
                    return 304, None, response.headers.get("ETag", etag)
                body = await self._read_body(response)
                if response.status >= 400:
                    message = body.get("error") if isinstance(body, dict) else None
                    logger.debug("%s %s failed with %s", method, path, response.status)
                    raise error_for_status(response.status, message)
                return response.status, body, response.headers.get("ETag")
        except asyncio.TimeoutError as exc:
            raise TransportError(f"{method} {path} timed out") from exc
        except aiohttp.ClientError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any:
        try:
            return await response.json(content_type=None)
        except ValueError as exc:
            if response.status >= 400:
                return None
            raise TransportError(f"Malformed response body from {response.url}") from exc

    async def _fetch(self, path: str, adapter: Any, etag: Optional[str]) -> FetchResult:
        status, body, new_etag = await self._request("GET", path, etag=etag)
        if status == 304:
            return FetchResult(payload=None, etag=new_etag, not_modified=True)
        return FetchResult(payload=_parse(adapter, body), etag=new_etag)

    async def list_habits(self, *, etag: Optional[str] = None) -> FetchResult:
        return await self._fetch("/api/habits", _HABITS, etag)

    async def list_entries(self, *, etag: Optional[str] = None) -> FetchResult:
        return await self._fetch("/api/habits/entries", _ENTRIES, etag)

    async def list_habit_entries(
        self, habit_id: str, *, etag: Optional[str] = None
    ) -> FetchResult:
        return await self._fetch(f"/api/habits/{habit_id}/entries", _ENTRIES, etag)

    async def dashboard(self, *, etag: Optional[str] = None) -> FetchResult:
        return await self._fetch("/api/dashboard-data", DashboardRead, etag)

    async def create_habit(self, payload: HabitCreate) -> HabitRead:
        _, body, _ = await self._request(
            "POST", "/api/habits", json=payload.model_dump(mode="json")
        )
        return _parse(HabitRead, body)

    async def update_habit(self, habit_id: str, payload: HabitUpdate) -> HabitRead:
        _, body, _ = await self._request(
            "PUT",
            f"/api/habits/{habit_id}",
            json=payload.model_dump(mode="json", exclude_unset=True),
        )
        return _parse(HabitRead, body)

    async def delete_habit(self, habit_id: str) -> None:
        await self._request("DELETE", f"/api/habits/{habit_id}")

    async def toggle_entry(self, habit_id: str, payload: EntryToggle) -> HabitEntryRead:
        _, body, _ = await self._request(
            "POST",
            f"/api/habits/{habit_id}/entries",
            json=payload.model_dump(mode="json", exclude_none=True),
        )
        return _parse(HabitEntryRead, body)


def _parse(target: Any, body: Any) -> Any:
    """Validate a decoded body into models, mapping failures to TransportError."""

    try:
        if isinstance(target, TypeAdapter):
            return target.validate_python(body)
        return target.model_validate(body)
    except PydanticValidationError as exc:
        raise TransportError(f"Unexpected response shape: {exc.error_count()} errors") from exc


__all__ = ["FetchResult", "HabitApiClient", "RemoteDataService", "USER_HEADER"]
