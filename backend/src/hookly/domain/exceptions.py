"""Domain-specific exception hierarchy.

All exceptions inherit from ``DomainError`` so callers can catch the entire
family in one clause while still discriminating on subclass.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for all domain-layer errors."""

    def __init__(self, message: str, *, code: str = "DOMAIN_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Validation ───────────────────────────────────────────────
class ValidationError(DomainError):
    """Input failed domain validation rules."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="VALIDATION_ERROR")


class InvalidConfigurationError(DomainError):
    """Budget or breaker configuration is negative or inconsistent."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_CONFIGURATION")


# ── Circuit breaker ──────────────────────────────────────────
class InvalidCircuitTransitionError(DomainError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot transition circuit from {current!r} to {target!r}",
            code="INVALID_CIRCUIT_TRANSITION",
        )


# ── Lookup ───────────────────────────────────────────────────
class NotFoundError(DomainError):
    """Base for lookups that found nothing."""


class ProviderNotFoundError(NotFoundError):
    def __init__(self, provider_id: str, *, what: str = "recorded history") -> None:
        self.provider_id = provider_id
        super().__init__(
            f"Provider {provider_id!r} has no {what}",
            code="PROVIDER_NOT_FOUND",
        )


class AlertNotFoundError(NotFoundError):
    def __init__(self, alert_id: str) -> None:
        self.alert_id = alert_id
        super().__init__(f"Cost alert {alert_id!r} not found", code="ALERT_NOT_FOUND")


# ── Infrastructure ───────────────────────────────────────────
class StorageUnavailableError(DomainError):
    """The backing store could not be read or written."""

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        message = f"Storage unavailable during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, code="STORAGE_UNAVAILABLE")
