from __future__ import annotations

from typing import Any, Literal

Disposition = Literal["retry", "park", "fatal"]


class CrosslistError(Exception):
    """
    Base of the job failure taxonomy.

    - code: stable machine-readable identifier persisted on the job
    - retryable: whether the dispatcher may re-enqueue with backoff
    - disposition: retry (backoff), park (needs a human), fatal (needs a data fix)
    - field: form field that failed, when the failure is tied to one
    """
    code = "CROSSLIST_ERROR"
    retryable = False
    disposition: Disposition = "fatal"

    def __init__(self, message: str, *, field: str | None = None, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.detail = detail or {}

    def to_detail(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.field:
            out["field"] = self.field
        if self.detail:
            out["detail"] = self.detail
        return out


class AuthenticationFailure(CrosslistError):
    # retried once through a fresh login by the job pipeline, then terminal
    code = "AUTHENTICATION_FAILED"
    retryable = False
    disposition: Disposition = "fatal"


class VerificationRequired(CrosslistError):
    code = "VERIFICATION_REQUIRED"
    retryable = False
    disposition: Disposition = "park"


class ElementNotFound(CrosslistError):
    code = "ELEMENT_NOT_FOUND"
    retryable = True
    disposition: Disposition = "retry"

    def __init__(self, selector: str, *, field: str | None = None, timeout_ms: int | None = None):
        msg = f"Element not found: {selector}"
        if field:
            msg = f"Element for field '{field}' not found: {selector}"
        super().__init__(msg, field=field, detail={"selector": selector, "timeout_ms": timeout_ms})
        self.selector = selector


class UploadFailure(CrosslistError):
    code = "UPLOAD_FAILED"
    retryable = True
    disposition: Disposition = "retry"


class ValidationRejected(CrosslistError):
    code = "VALIDATION_REJECTED"
    retryable = False
    disposition: Disposition = "fatal"


class NetworkError(CrosslistError):
    code = "NETWORK_ERROR"
    retryable = True
    disposition: Disposition = "retry"


class OperationTimeout(NetworkError):
    code = "TIMEOUT"


class DecryptionError(CrosslistError):
    code = "DECRYPTION_FAILED"
    retryable = False
    disposition: Disposition = "fatal"


class UnsupportedPlatform(CrosslistError):
    code = "UNSUPPORTED_PLATFORM"
    retryable = False
    disposition: Disposition = "fatal"


class InvalidTransition(Exception):
    def __init__(self, current: str, target: str):
        super().__init__(f"Illegal job transition {current} -> {target}")
        self.current = current
        self.target = target


# Reported when ElementNotFound exhausts the retry ceiling: the selectors have drifted.
ADAPTER_UPDATE_REQUIRED = "ADAPTER_UPDATE_REQUIRED"
# A worker stopped renewing its lease (process killed, host lost).
LEASE_EXPIRED = "LEASE_EXPIRED"

VERIFICATION_MESSAGE = (
    "Please log into {platform} manually from your browser to verify this device. "
    "After verification, resume the job and future crosslistings will work automatically."
)


def classify_http_status(status_code: int | None, *, retryable: bool, message: str) -> CrosslistError:
    """Map a failed HttpResult onto the taxonomy."""
    if status_code in (401, 403):
        return AuthenticationFailure(message, detail={"status_code": status_code})
    if status_code is None or retryable:
        return NetworkError(message, detail={"status_code": status_code})
    return ValidationRejected(message, detail={"status_code": status_code})
