"""
Source Registry Module
======================

Manages listing-site configurations loaded from YAML files. Sources define
which hosts a listing URL may come from, which paths on those hosts are
listings, and which senders deliver their alert emails.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from listing_radar.core.enums import ListingSource

logger = logging.getLogger(__name__)


@dataclass
class SourceConfig:
    """Configuration for a single listing site."""

    name: ListingSource
    domains: list[str] = field(default_factory=list)
    enabled: bool = True
    description: str = ""
    allowlist: list[str] = field(default_factory=list)
    denylist: list[str] = field(default_factory=list)
    senders: list[str] = field(default_factory=list)
    # Domain match with a disallowed path rejects the URL outright instead
    # of letting it fall through to the "other" source.
    strict: bool = False

    # Compiled regex patterns (populated lazily)
    _allowlist_patterns: list[re.Pattern[str]] | None = field(
        default=None, repr=False, compare=False
    )
    _denylist_patterns: list[re.Pattern[str]] | None = field(
        default=None, repr=False, compare=False
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceConfig:
        """Create from dictionary."""
        return cls(
            name=ListingSource(data["name"]),
            domains=[d.lower() for d in data.get("domains", [])],
            enabled=data.get("enabled", True),
            description=data.get("description", ""),
            allowlist=data.get("allowlist", []),
            denylist=data.get("denylist", []),
            senders=data.get("senders", []),
            strict=data.get("strict", False),
        )

    def _compile_patterns(self) -> None:
        """Compile regex patterns for path filtering."""
        if self._allowlist_patterns is None:
            self._allowlist_patterns = [re.compile(p) for p in self.allowlist]
        if self._denylist_patterns is None:
            self._denylist_patterns = [re.compile(p) for p in self.denylist]

    def matches_domain(self, host: str) -> bool:
        """Check if a host belongs to this source (exact or subdomain)."""
        host = host.lower()
        return any(host == d or host.endswith("." + d) for d in self.domains)

    def is_path_allowed(self, path: str) -> bool:
        """
        Check if a URL path is a listing path for this source.

        Rules:
        1. If path matches any denylist pattern, it's denied
        2. If allowlist is empty, path is allowed
        3. If allowlist is not empty, path must match at least one pattern
        """
        self._compile_patterns()

        for pattern in self._denylist_patterns or []:
            if pattern.search(path):
                return False

        if not self._allowlist_patterns:
            return True

        for pattern in self._allowlist_patterns or []:
            if pattern.search(path):
                return True

        return False


@dataclass
class GlobalConfig:
    """Global ingestion settings."""

    page_size: int = 50
    backfill_max_pages: int = 10
    window_minutes: int = 60
    backfill_days: int = 30
    rate_limit_window_seconds: int = 30
    request_timeout: int = 30
    refresh_margin_seconds: int = 60
    accept_unknown_sources: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            page_size=int(data.get("page_size", 50)),
            backfill_max_pages=int(data.get("backfill_max_pages", 10)),
            window_minutes=int(data.get("window_minutes", 60)),
            backfill_days=int(data.get("backfill_days", 30)),
            rate_limit_window_seconds=int(data.get("rate_limit_window_seconds", 30)),
            request_timeout=int(data.get("request_timeout", 30)),
            refresh_margin_seconds=int(data.get("refresh_margin_seconds", 60)),
            accept_unknown_sources=bool(data.get("accept_unknown_sources", True)),
        )


DEFAULT_SOURCES: list[dict[str, Any]] = [
    {
        "name": "facebook",
        "domains": ["facebook.com"],
        "allowlist": [r"/marketplace/(?:.*/)?item/"],
        "senders": ["notification@facebookmail.com"],
    },
    {
        "name": "craigslist",
        "domains": ["craigslist.org"],
        "allowlist": [r"/apa"],
        "senders": ["alerts@craigslist.org"],
        "strict": True,
    },
    {
        "name": "streeteasy",
        "domains": ["streeteasy.com"],
        "senders": ["noreply@email.streeteasy.com"],
    },
]


class SourceRegistry:
    """
    Registry for listing-site configurations.

    Loads source definitions from a YAML file and classifies canonical
    URLs into a ListingSource (or rejects them).
    """

    def __init__(self) -> None:
        self._sources: dict[ListingSource, SourceConfig] = {}
        self._global_config: GlobalConfig = GlobalConfig()
        self._config_path: Path | None = None

    @classmethod
    def with_defaults(cls) -> SourceRegistry:
        """Create a registry with the built-in Facebook/Craigslist/StreetEasy rules."""
        registry = cls()
        registry.load_dict({"sources": DEFAULT_SOURCES})
        return registry

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

    def load_config(self, config_path: Path | str) -> None:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the sources.yaml file
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        self._config_path = config_path
        self.load_dict(data)

    def load_dict(self, data: dict[str, Any]) -> None:
        """Load configuration from an already parsed mapping."""
        self._global_config = GlobalConfig.from_dict(data.get("global"))

        self._sources.clear()
        for source_data in data.get("sources", []):
            source = SourceConfig.from_dict(source_data)
            self._sources[source.name] = source

    def get_source(self, name: ListingSource | str) -> SourceConfig | None:
        """
        Get a source configuration by name.

        Args:
            name: Source name

        Returns:
            SourceConfig if found, None otherwise
        """
        try:
            return self._sources.get(ListingSource(name))
        except ValueError:
            return None

    def list_sources(self) -> list[SourceConfig]:
        """Get all registered sources."""
        return list(self._sources.values())

    def list_enabled_sources(self) -> list[SourceConfig]:
        """Get all enabled sources."""
        return [s for s in self._sources.values() if s.enabled]

    def enable_source(self, name: ListingSource | str) -> bool:
        """Enable a source. Returns False if it is not registered."""
        source = self.get_source(name)
        if source is None:
            return False
        source.enabled = True
        return True

    def disable_source(self, name: ListingSource | str) -> bool:
        """Disable a source. Returns False if it is not registered."""
        source = self.get_source(name)
        if source is None:
            return False
        source.enabled = False
        return True

    def senders(self) -> list[str]:
        """Alert sender addresses of all enabled sources."""
        result: list[str] = []
        for source in self.list_enabled_sources():
            for sender in source.senders:
                if sender not in result:
                    result.append(sender)
        return result

    def classify(self, url: str) -> ListingSource | None:
        """
        Decide which source a canonical URL belongs to.

        Args:
            url: Canonical listing URL

        Returns:
            The matching ListingSource, OTHER for unknown hosts when those
            are accepted, or None when the URL must be skipped
        """
        parts = urlsplit(url)
        host = parts.hostname or ""
        path = parts.path or "/"

        for source in self._sources.values():
            if source.name == ListingSource.OTHER or not source.matches_domain(host):
                continue
            if not source.enabled:
                return None
            if source.is_path_allowed(path):
                return source.name
            if source.strict:
                return None

        if not self._global_config.accept_unknown_sources:
            return None
        other = self._sources.get(ListingSource.OTHER)
        if other is not None:
            if other.enabled and other.is_path_allowed(path):
                return ListingSource.OTHER
            return None
        return ListingSource.OTHER


# Global registry instance
_default_registry: SourceRegistry | None = None


def get_default_registry() -> SourceRegistry:
    """
    Get the default source registry instance.

    Loads configuration from the path specified in SOURCES_CONFIG_PATH
    environment variable, or falls back to config/sources.yaml, or to the
    built-in rules when neither exists.

    Returns:
        The global SourceRegistry instance
    """
    global _default_registry

    if _default_registry is None:
        config_path = os.environ.get("SOURCES_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            # Default to config/sources.yaml relative to project root
            module_dir = Path(__file__).parent
            project_root = module_dir.parent.parent
            path = project_root / "config" / "sources.yaml"

        if path.exists():
            _default_registry = SourceRegistry()
            _default_registry.load_config(path)
        else:
            logger.info(f"No sources config at {path}, using built-in rules")
            _default_registry = SourceRegistry.with_defaults()

    return _default_registry


def reset_default_registry() -> None:
    """Reset the default registry (useful for testing)."""
    global _default_registry
    _default_registry = None
