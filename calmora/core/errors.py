# calmora/core/errors.py
"""
Errores del ciclo de vida 2FA.

Cada error lleva un `kind` (discriminante) que la API traduce a un status HTTP
en un único exception handler (ver calmora/main.py).
"""
import enum


class TwoFactorErrorKind(str, enum.Enum):
    invalid_state = "invalid_state"
    verification_failed = "verification_failed"
    storage_unavailable = "storage_unavailable"
    conflict = "conflict"
    access_denied = "access_denied"


class TwoFactorError(Exception):
    kind: TwoFactorErrorKind
    default_detail = "Two-factor authentication error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    @property
    def retriable(self) -> bool:
        return self.kind in (
            TwoFactorErrorKind.verification_failed,
            TwoFactorErrorKind.conflict,
            TwoFactorErrorKind.storage_unavailable,
        )


class InvalidState(TwoFactorError):
    kind = TwoFactorErrorKind.invalid_state
    default_detail = "Operation not allowed in the current 2FA state"


class VerificationFailed(TwoFactorError):
    kind = TwoFactorErrorKind.verification_failed
    default_detail = "Invalid verification code"


class StorageUnavailable(TwoFactorError):
    kind = TwoFactorErrorKind.storage_unavailable
    default_detail = "Storage unavailable, try again"


class Conflict(TwoFactorError):
    kind = TwoFactorErrorKind.conflict
    default_detail = "Your 2FA status changed, please refresh"


class AccessDenied(TwoFactorError):
    kind = TwoFactorErrorKind.access_denied
    default_detail = "Access denied"


HTTP_STATUS_BY_KIND: dict[TwoFactorErrorKind, int] = {
    TwoFactorErrorKind.invalid_state: 409,
    TwoFactorErrorKind.verification_failed: 400,
    TwoFactorErrorKind.storage_unavailable: 503,
    TwoFactorErrorKind.conflict: 409,
    TwoFactorErrorKind.access_denied: 403,
}
