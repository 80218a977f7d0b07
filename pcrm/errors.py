"""Error taxonomy for the sync and reconciliation core."""

from __future__ import annotations


class SyncError(RuntimeError):
    """Base vault sync error."""


class PayloadError(SyncError):
    """Inbound payload is malformed (JSON, UUID, timestamp or enum)."""


class RefResolutionError(SyncError):
    """A mandatory reference could not be resolved."""


class CodecError(SyncError):
    """Payload could not be sealed or opened."""


class StorageError(SyncError):
    """Transactional I/O against the local store failed."""


class TransportError(SyncError):
    """Network failure or 5xx from the vault server. Retried next cycle."""


class AuthError(SyncError):
    """Vault rejected the credentials, or the refresh token was refused."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RemoteRejectedError(SyncError):
    """Vault rejected a request permanently (4xx other than auth)."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Vault request rejected ({status_code}): {message}")


class SyncInProgressError(SyncError):
    """Another sync cycle already holds the store."""


class ProviderError(RuntimeError):
    """Base external provider error."""


class ProviderTokenExpired(ProviderError):
    """Provider rejected the saved sync token (410 Gone)."""


class ProviderPermanentError(ProviderError):
    """Provider request failed and cannot be recovered automatically."""

    def __init__(self, *, status_code: int | None, message: str) -> None:
        self.status_code = status_code
        self.message = message
        if status_code is None:
            super().__init__(message)
        else:
            super().__init__(f"Provider request failed ({status_code}): {message}")
