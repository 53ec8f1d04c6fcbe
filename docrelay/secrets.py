"""
Signing key references.

Keys are configured as references (e.g., "env:NOSTR_BOT_KEY"), not raw
values, so settings files and logs only ever carry the reference.

The reference format is: "<provider>:<key>"
- env:VAR_NAME - environment variable
- file:PATH - first line of a file (e.g. a mounted secret)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol


class SecretsProvider(Protocol):
    """Protocol for resolving secret references to values."""

    def get(self, ref: str) -> str | None:
        """Resolve a secret reference to its value, or None if not found."""
        ...

    def supports(self, ref: str) -> bool:
        """True if this provider can resolve the reference."""
        ...


class EnvSecretsProvider:
    """
    Resolve secrets from environment variables.

    Reference format: "env:VAR_NAME"
    Example: "env:NOSTR_BOT_KEY" resolves to os.environ["NOSTR_BOT_KEY"]
    """

    PREFIX = "env:"

    def __init__(self, environ: dict[str, str] | None = None):
        self.environ = os.environ if environ is None else environ

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        value = self.environ.get(ref[len(self.PREFIX) :])
        return value.strip() if value and value.strip() else None


class FileSecretsProvider:
    """Resolve secrets from the first non-empty line of a file."""

    PREFIX = "file:"

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        path = Path(ref[len(self.PREFIX) :]).expanduser()
        if not path.is_file():
            return None
        for line in path.read_text(encoding="utf-8").splitlines():
            if line.strip():
                return line.strip()
        return None


class CompositeSecretsProvider:
    """
    Combine multiple secrets providers.

    Tries each provider in order until one returns a value.
    """

    def __init__(self, providers: list[SecretsProvider] | None = None):
        self.providers = providers or [EnvSecretsProvider(), FileSecretsProvider()]

    def supports(self, ref: str) -> bool:
        return any(p.supports(ref) for p in self.providers)

    def get(self, ref: str) -> str | None:
        for provider in self.providers:
            if provider.supports(ref):
                value = provider.get(ref)
                if value is not None:
                    return value
        return None
