"""
Custom exceptions for the Store Notifier.

This module defines the error taxonomy used across polling, detection,
composition and delivery.
"""

from typing import Any


class StoreNotifierError(Exception):
    """Base exception for Store Notifier errors."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code or "STORE_NOTIFIER_ERROR"
        self.context = context or {}


class ConfigurationError(StoreNotifierError):
    """Exception for missing or invalid credentials and identifiers."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "CONFIGURATION_ERROR", context)


class FetchError(StoreNotifierError):
    """Exception for failed backend calls."""

    def __init__(
        self,
        message: str,
        platform: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, "FETCH_ERROR", context)
        self.platform = platform
        self.status_code = status_code


class ComposeError(StoreNotifierError):
    """Exception for notification data that cannot be rendered."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "COMPOSE_ERROR", context)


class DeliveryError(StoreNotifierError):
    """Exception for a rejected or unreachable delivery sink."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, "DELIVERY_ERROR", context)
        self.status_code = status_code


class StateStoreError(StoreNotifierError):
    """Exception for state store read/write failures."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "STATE_STORE_ERROR", context)
