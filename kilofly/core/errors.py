from __future__ import annotations

from typing import Any


class ProviderError(Exception):
    """A payment/push/email provider refused or failed a call."""

    def __init__(self, provider: str, message: str, *, detail: dict[str, Any] | None = None, status_code: int | None = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.detail = detail or {}
        self.status_code = status_code


class OperationRefused(Exception):
    """A business rule refused the operation; answered as 400 {"success": false, "error": ...}."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
