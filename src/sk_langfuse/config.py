"""Adapter configuration."""

import os
from typing import Optional

from pydantic import BaseModel, field_validator

from .exceptions import MissingCredentialsError

DEFAULT_ENDPOINT = "https://cloud.langfuse.com"
DEFAULT_SOURCE_PREFIXES = ("semantic_kernel", "Microsoft.SemanticKernel")

_TRUTHY = ("true", "1", "yes")


class LangfuseConfig(BaseModel):
    public_key: str
    secret_key: str
    endpoint_url: str = DEFAULT_ENDPOINT
    throw_on_error: bool = False
    release_client_on_dispose: bool = True
    timeout: float = 10.0

    # Only activities whose source starts with one of these are exported
    source_prefixes: tuple[str, ...] = DEFAULT_SOURCE_PREFIXES

    max_workers: int = 4  # batch exporter thread pool
    max_queue_size: int = 1000  # listener work queue

    @field_validator("public_key", "secret_key")
    @classmethod
    def _require_credential(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Langfuse credentials must be non-empty")
        return value

    @field_validator("endpoint_url")
    @classmethod
    def _strip_endpoint(cls, value: str) -> str:
        return (value or DEFAULT_ENDPOINT).rstrip("/")

    @classmethod
    def from_env(cls, **overrides) -> "LangfuseConfig":
        """Build a config from ``LANGFUSE_*`` environment variables.

        Explicit keyword overrides win over the environment.
        """
        values: dict = {
            "public_key": os.getenv("LANGFUSE_PUBLIC_KEY", ""),
            "secret_key": os.getenv("LANGFUSE_SECRET_KEY", ""),
        }
        host: Optional[str] = os.getenv("LANGFUSE_HOST")
        if host:
            values["endpoint_url"] = host
        throw = os.getenv("LANGFUSE_THROW_ON_ERROR")
        if throw is not None:
            values["throw_on_error"] = throw.strip().lower() in _TRUTHY
        values.update(overrides)

        missing = [
            name
            for name, key in (
                ("LANGFUSE_PUBLIC_KEY", "public_key"),
                ("LANGFUSE_SECRET_KEY", "secret_key"),
            )
            if not values.get(key)
        ]
        if missing:
            raise MissingCredentialsError(missing)
        return cls(**values)

    def matches_source(self, source: Optional[str]) -> bool:
        """True if *source* belongs to one of the exported telemetry namespaces."""
        if not source:
            return False
        lowered = source.lower()
        return any(lowered.startswith(p.lower()) for p in self.source_prefixes)
