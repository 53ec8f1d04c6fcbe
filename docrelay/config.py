"""Settings and relay configuration loading.

Settings live in ``docrelay.toml`` or under ``[tool.docrelay]`` in
``pyproject.toml``. The relay category map is a separate YAML file
(category -> list of relay URLs). Both are loaded once and passed explicitly
into the objects that need them.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_RELAY = "wss://thecitadel.nostr1.com"
DEFAULT_KEY_REF = "env:NOSTR_BOT_KEY"
SETTINGS_FILENAME = "docrelay.toml"


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class Settings:
    """Run configuration for compilation and dissemination."""

    quorum: int = 1
    max_retries: int = 3
    base_delay: float = 2.0
    backoff_multiplier: float = 1.5
    max_delay: float = 15.0
    jitter: float = 0.25
    attempt_timeout: float = 10.0
    probe_timeout: float = 5.0
    run_timeout: float = 300.0
    max_concurrency: int = 4
    default_relay: str = DEFAULT_RELAY
    relays: str = "all"  # relay spec used when neither caller nor document names one
    relay_config: Path | None = None
    key_ref: str = DEFAULT_KEY_REF
    content_kind: str | None = None
    content_level: int | None = None
    verify: bool = False

    def __post_init__(self):
        if self.quorum < 1:
            raise ConfigError(f"quorum must be at least 1, got {self.quorum}")
        if self.max_retries < 0:
            raise ConfigError(f"max_retries must not be negative, got {self.max_retries}")
        if self.max_concurrency < 1:
            raise ConfigError(f"max_concurrency must be at least 1, got {self.max_concurrency}")
        for name in ("base_delay", "max_delay"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        for name in ("attempt_timeout", "probe_timeout", "run_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.backoff_multiplier < 1:
            raise ConfigError(f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}")
        if not 0 <= self.jitter < 1:
            raise ConfigError(f"jitter must be in [0, 1), got {self.jitter}")
        if not self.default_relay.startswith(("ws://", "wss://")):
            raise ConfigError(f"default_relay must be a ws:// or wss:// URL, got {self.default_relay!r}")
        if self.content_level is not None and not 0 <= self.content_level <= 6:
            raise ConfigError(f"content_level must be 0..6, got {self.content_level}")

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Path | None = None) -> Settings:
        """Build settings from a parsed TOML table, converting value types."""
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigError(f"unknown settings: {', '.join(unknown)}")

        values: dict[str, Any] = {}
        for name, raw in data.items():
            default = known[name].default
            try:
                if name == "relay_config":
                    path = Path(str(raw)).expanduser()
                    values[name] = path if path.is_absolute() or base_dir is None else base_dir / path
                elif name == "relays" and isinstance(raw, list):
                    values[name] = ", ".join(str(r) for r in raw)
                elif name == "content_level":
                    values[name] = int(raw)
                elif isinstance(default, bool):
                    if not isinstance(raw, bool):
                        raise TypeError("expected true or false")
                    values[name] = raw
                elif isinstance(default, int):
                    if isinstance(raw, bool) or not isinstance(raw, int):
                        raise TypeError("expected an integer")
                    values[name] = raw
                elif isinstance(default, float):
                    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                        raise TypeError("expected a number")
                    values[name] = float(raw)
                else:
                    values[name] = str(raw)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"invalid value for {name}: {raw!r} ({e})") from None
        return cls(**values)


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from a TOML file.

    ``path`` may point at ``docrelay.toml`` or ``pyproject.toml``; a directory
    is searched for either. Missing files give default settings.
    """
    if path is None:
        path = Path.cwd()
    if path.is_dir():
        candidates = [path / SETTINGS_FILENAME, path / "pyproject.toml"]
        path = next((c for c in candidates if c.exists()), candidates[0])
    if not path.exists():
        logger.debug("No settings file at %s, using defaults", path)
        return Settings()

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: {e}") from e

    if path.name == "pyproject.toml":
        data = _coerce_dict(_coerce_dict(data.get("tool")).get("docrelay"))
    else:
        data = _coerce_dict(data.get("docrelay", data))
    return Settings.from_dict(data, base_dir=path.parent)


@dataclass(frozen=True)
class RelayConfig:
    """Relay URLs grouped by category."""

    categories: dict[str, list[str]] = field(default_factory=dict)

    def __contains__(self, category: str) -> bool:
        return category in self.categories

    def get(self, category: str) -> list[str]:
        return list(self.categories.get(category, []))

    def all(self) -> list[str]:
        """Every URL across categories, de-duplicated, first occurrence order."""
        seen: dict[str, None] = {}
        for urls in self.categories.values():
            for url in urls:
                seen.setdefault(url, None)
        return list(seen)

    def category_of(self, url: str) -> str | None:
        """First category listing the URL."""
        return next((name for name, urls in self.categories.items() if url in urls), None)

    @classmethod
    def from_dict(cls, data: Any) -> RelayConfig:
        categories: dict[str, list[str]] = {}
        for name, urls in _coerce_dict(data).items():
            if isinstance(urls, str):
                urls = [urls]
            if not isinstance(urls, list):
                logger.warning("Relay category %r is not a list, skipped", name)
                continue
            valid = [str(u).strip() for u in urls if str(u).strip().startswith(("ws://", "wss://"))]
            if len(valid) != len(urls):
                logger.warning("Relay category %r has non-websocket entries, skipped them", name)
            categories[str(name)] = valid
        return cls(categories=categories)


def load_relay_config(path: Path | None) -> RelayConfig:
    """Load the relay category map from YAML.

    A missing or unreadable file yields an empty config, which resolves to
    the default relay.
    """
    if path is None or not path.exists():
        if path is not None:
            logger.warning("Relay config %s not found, using the default relay only", path)
        return RelayConfig()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        logger.warning("Relay config %s is not valid YAML (%s), using the default relay only", path, e)
        return RelayConfig()
    return RelayConfig.from_dict(data)
