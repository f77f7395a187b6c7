"""Custom exceptions for the Langfuse adapter."""

from typing import Optional


class MissingCredentialsError(ValueError):
    """Raised when Langfuse credentials cannot be found in the environment."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(
            f"Missing Langfuse credentials: {', '.join(missing)}. "
            f"Set them in the environment or pass them explicitly."
        )


class LangfuseAPIError(Exception):
    """Raised for a failed Langfuse API call when ``throw_on_error`` is enabled.

    The underlying ``httpx`` error is chained as ``__cause__``.
    """

    def __init__(
        self,
        method: str,
        path: str,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        self.method = method
        self.path = path
        self.status_code = status_code
        self.detail = detail
        status = f"HTTP {status_code}" if status_code is not None else "transport error"
        message = f"Langfuse {method} {path} failed ({status})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
