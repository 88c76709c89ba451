from __future__ import annotations


class ProviderError(Exception):
    """Raised by an adapter when it cannot produce usable data."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.message = message
        super().__init__(f"{provider}: {message}")


class ProviderNotConfigured(ProviderError):
    def __init__(self, provider: str) -> None:
        super().__init__(provider, "missing_key")


class ProviderHTTPError(ProviderError):
    def __init__(self, provider: str, status_code: int | None, message: str = "error") -> None:
        self.status_code = status_code
        self.rate_limited = status_code == 429
        if self.rate_limited:
            message = "rate_limited"
        super().__init__(provider, message if status_code is None else f"{message} ({status_code})")


class ProviderDataError(ProviderError):
    pass
