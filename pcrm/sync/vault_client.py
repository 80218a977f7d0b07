"""Vault API client - push/pull of sealed changes and token refresh."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from ..config import settings
from ..errors import AuthError, RemoteRejectedError, TransportError
from ..schemas.payloads import PushItem
from ..schemas.sync import PullBatch, TokenGrant

logger = logging.getLogger(__name__)


class VaultTransport(Protocol):
    """What the sync engine needs from a vault connection."""

    def set_token(self, token: str) -> None: ...

    async def push(self, items: list[PushItem]) -> int: ...

    async def pull(self, since: int, limit: int) -> PullBatch: ...

    async def refresh_token(self, refresh_token: str) -> TokenGrant: ...


class VaultClient:
    """Async vault client. Use as ``async with VaultClient(...) as client``."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        user_id: str,
        device_id: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.user_id = user_id
        self.device_id = device_id
        self.timeout = settings.vault_request_timeout_seconds if timeout is None else timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> VaultClient:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def set_token(self, token: str) -> None:
        self.token = token
        if self._client:
            self._client.headers["Authorization"] = f"Bearer {token}"

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code >= 500:
            raise TransportError(f"{method} {path} returned {resp.status_code}")
        if resp.status_code in (401, 403):
            raise AuthError(
                f"{method} {path} unauthorized ({resp.status_code})", status_code=resp.status_code
            )
        if resp.status_code >= 400:
            raise RemoteRejectedError(status_code=resp.status_code, message=resp.text[:500])

        try:
            data = resp.json()
        except ValueError as exc:
            raise TransportError(f"{method} {path} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise TransportError(f"{method} {path} returned unexpected body")
        return data

    async def push(self, items: list[PushItem]) -> int:
        """Upload a batch; returns the highest seq the server acknowledged."""
        body = {
            "user_id": self.user_id,
            "device_id": self.device_id,
            "items": [item.model_dump() for item in items],
        }
        data = await self._request("POST", "/v1/sync/push", json=body)
        ack = data.get("ack_seq")
        if not isinstance(ack, int):
            raise TransportError("Push response missing ack_seq")
        return ack

    async def pull(self, since: int, limit: int) -> PullBatch:
        data = await self._request(
            "GET", "/v1/sync/pull", params={"since": since, "limit": limit}
        )
        try:
            return PullBatch.model_validate(data)
        except ValidationError as exc:
            raise TransportError(f"Malformed pull response: {exc.errors()[0]['msg']}") from exc

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        data = await self._request(
            "POST", "/v1/auth/refresh", json={"refresh_token": refresh_token}
        )
        try:
            grant = TokenGrant.model_validate(data)
        except ValidationError as exc:
            raise AuthError(f"Malformed token refresh response: {exc.errors()[0]['msg']}") from exc
        logger.debug("Vault token refreshed, expires %s", grant.expires_at.isoformat())
        return grant
