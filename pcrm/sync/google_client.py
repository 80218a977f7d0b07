"""Google API clients - Calendar events, People connections, Gmail messages.

Each list call takes a PageRequest and returns one ProviderPage. A saved
sync token the server no longer accepts raises ProviderTokenExpired; every
other failure raises ProviderPermanentError.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import settings
from ..errors import ProviderPermanentError, ProviderTokenExpired
from ..schemas.sync import PageRequest, ProviderPage

logger = logging.getLogger(__name__)

CALENDAR_BASE_URL = "https://www.googleapis.com/calendar/v3"
PEOPLE_BASE_URL = "https://people.googleapis.com/v1"
GMAIL_BASE_URL = "https://gmail.googleapis.com/gmail/v1"

PERSON_FIELDS = "names,emailAddresses,phoneNumbers,organizations,biographies"
MESSAGE_HEADERS = ["From", "To", "Cc", "Date", "Subject"]


def _rfc3339(value) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


class GoogleAPIClient:
    """Bearer-token httpx client. Use as ``async with``."""

    BASE_URL = ""

    def __init__(
        self,
        access_token: str,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.access_token = access_token
        self.timeout = settings.provider_request_timeout_seconds if timeout is None else timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self.BASE_URL,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Accept": "application/json",
            },
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _is_expired_token(self, resp: httpx.Response, token_request: bool) -> bool:
        return token_request and resp.status_code == 410

    async def _get(self, path: str, *, token_request: bool = False, **params) -> dict[str, Any]:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")
        params = {k: v for k, v in params.items() if v is not None}
        try:
            resp = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise ProviderPermanentError(status_code=None, message=f"GET {path} failed: {exc}") from exc

        if self._is_expired_token(resp, token_request):
            raise ProviderTokenExpired(f"Sync token rejected by {path} ({resp.status_code})")
        if resp.status_code >= 400:
            raise ProviderPermanentError(status_code=resp.status_code, message=resp.text[:500])
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderPermanentError(
                status_code=resp.status_code, message=f"GET {path} returned invalid JSON"
            ) from exc
        return data if isinstance(data, dict) else {}


class CalendarClient(GoogleAPIClient):
    BASE_URL = CALENDAR_BASE_URL

    def __init__(self, access_token: str, *, calendar_id: str | None = None, **kwargs) -> None:
        super().__init__(access_token, **kwargs)
        self.calendar_id = calendar_id or settings.google_calendar_id

    async def list_events(self, request: PageRequest) -> ProviderPage:
        params: dict[str, Any] = {
            "maxResults": request.page_size,
            "singleEvents": "true",
            "pageToken": request.page_token,
        }
        if request.is_token_request:
            # Google rejects orderBy/timeMin/timeMax alongside syncToken.
            params["syncToken"] = request.sync_token
        else:
            params["orderBy"] = "startTime"
            if request.time_min is not None:
                params["timeMin"] = _rfc3339(request.time_min)
            if request.time_max is not None:
                params["timeMax"] = _rfc3339(request.time_max)
        data = await self._get(
            f"/calendars/{self.calendar_id}/events",
            token_request=request.is_token_request,
            **params,
        )
        return ProviderPage(
            items=data.get("items") or [],
            next_page_token=data.get("nextPageToken"),
            next_sync_token=data.get("nextSyncToken"),
        )


class PeopleClient(GoogleAPIClient):
    BASE_URL = PEOPLE_BASE_URL

    def _is_expired_token(self, resp: httpx.Response, token_request: bool) -> bool:
        # People reports an expired token as 400 EXPIRED_SYNC_TOKEN as well as 410.
        if not token_request:
            return False
        if resp.status_code == 410:
            return True
        return resp.status_code == 400 and "EXPIRED_SYNC_TOKEN" in resp.text

    async def list_connections(self, request: PageRequest) -> ProviderPage:
        data = await self._get(
            "/people/me/connections",
            token_request=request.is_token_request,
            personFields=PERSON_FIELDS,
            pageSize=request.page_size,
            requestSyncToken="true",
            syncToken=request.sync_token,
            pageToken=request.page_token,
        )
        return ProviderPage(
            items=data.get("connections") or [],
            next_page_token=data.get("nextPageToken"),
            next_sync_token=data.get("nextSyncToken"),
        )


class GmailClient(GoogleAPIClient):
    """Messages are returned with metadata headers; the sync token is a history id."""

    BASE_URL = GMAIL_BASE_URL

    def _is_expired_token(self, resp: httpx.Response, token_request: bool) -> bool:
        # A stale startHistoryId comes back as 404.
        return token_request and resp.status_code in (404, 410)

    async def get_message(self, message_id: str) -> dict[str, Any]:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")
        path = f"/users/me/messages/{message_id}"
        try:
            resp = await self._client.get(
                path,
                params=[("format", "metadata")] + [("metadataHeaders", h) for h in MESSAGE_HEADERS],
            )
        except httpx.HTTPError as exc:
            raise ProviderPermanentError(status_code=None, message=f"GET {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise ProviderPermanentError(status_code=resp.status_code, message=resp.text[:500])
        return resp.json()

    async def current_history_id(self) -> str | None:
        data = await self._get("/users/me/profile")
        history_id = data.get("historyId")
        return str(history_id) if history_id else None

    async def list_messages(self, request: PageRequest) -> ProviderPage:
        if request.is_token_request:
            data = await self._get(
                "/users/me/history",
                token_request=True,
                startHistoryId=request.sync_token,
                historyTypes="messageAdded",
                maxResults=request.page_size,
                pageToken=request.page_token,
            )
            refs = [
                added["message"]
                for record in data.get("history") or []
                for added in record.get("messagesAdded") or []
                if isinstance(added.get("message"), dict)
            ]
            next_history = data.get("historyId")
            sync_token = str(next_history) if next_history else None
        else:
            query = None
            if request.time_min is not None:
                query = f"after:{int(request.time_min.timestamp())}"
            data = await self._get(
                "/users/me/messages",
                q=query,
                maxResults=request.page_size,
                pageToken=request.page_token,
            )
            refs = data.get("messages") or []
            sync_token = None

        next_page = data.get("nextPageToken")
        if not next_page and sync_token is None:
            sync_token = await self.current_history_id()

        items = []
        seen: set[str] = set()
        for ref in refs:
            message_id = ref.get("id")
            if not message_id or message_id in seen:
                continue
            seen.add(message_id)
            items.append(await self.get_message(message_id))
        return ProviderPage(items=items, next_page_token=next_page, next_sync_token=sync_token)
