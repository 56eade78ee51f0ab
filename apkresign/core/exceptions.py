"""
apkresign Exception Hierarchy

Every failure the signing pipeline reports on its own account. Archive I/O
errors raised by the ZIP writer are not wrapped and reach the caller as-is.
"""

from typing import Any, Dict, Optional


class ApkResignError(Exception):
    """Base exception for all apkresign errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "APKRESIGN_ERROR"
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(ApkResignError):
    """Raised when the configuration names something that cannot be used."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message,
            code="CONFIG_ERROR",
            details={"field": field},
        )
        self.field = field


class IdentityError(ApkResignError):
    """
    Raised when the signing identity cannot be produced.

    Covers an unreadable or corrupt keystore, a wrong store or entry
    password, a missing alias and key or certificate generation failures.
    Always fatal, and always raised before any archive byte is written.
    """

    def __init__(
        self,
        message: str,
        keystore: Optional[str] = None,
        alias: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="IDENTITY_ERROR",
            details={
                "keystore": keystore,
                "alias": alias,
            },
        )
        self.keystore = keystore
        self.alias = alias


class ClosedSignerError(ApkResignError):
    """Raised when an entry is submitted after finalization has begun."""

    def __init__(
        self,
        message: str,
        state: Optional[str] = None,
        path: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="SIGNER_CLOSED",
            details={
                "state": state,
                "path": path,
            },
        )
        self.state = state
        self.path = path


class SigningError(ApkResignError):
    """
    Raised when digesting or signing fails during finalization.

    Metadata entries already written are not rolled back; the output must
    be discarded by the caller.
    """

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(
            message,
            code="SIGNING_ERROR",
            details={"stage": stage},
        )
        self.stage = stage
