"""
Compiler configuration: defaults, the configuration model and its loader.

A configuration file is JSON:

    {
      "name": "My list",
      "sources": [
        {"source": "https://example.org/filter.txt", "type": "adblock"},
        {"source": "local/hosts.txt", "type": "hosts",
         "transformations": ["RemoveComments"]}
      ],
      "transformations": ["Compress", "Validate"],
      "exclusions": ["*.example.net", "/^@@/"],
      "exclusions_sources": ["exclusions.txt"]
    }
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from filterlist_compiler.errors import ConfigurationError

logger = logging.getLogger(__name__)


# ----------------------------------------
# Defaults
# ----------------------------------------
PROGRAM_NAME = "filterlist-compiler"
PROGRAM_VERSION = "1.0.0"
USER_AGENT = f"{PROGRAM_NAME}/{PROGRAM_VERSION}"

DEFAULT_TIMEOUT = 30.0  # seconds
DEFAULT_RETRIES = 3  # retries after the first attempt
DEFAULT_RETRY_DELAY = 1.0  # seconds, doubled per attempt
DEFAULT_RETRY_JITTER = 0.3  # up to 30% added on top of the delay
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_MAX_INCLUDE_DEPTH = 10
DEFAULT_CONCURRENCY = 10
DEFAULT_HOSTS_IP = "0.0.0.0"
DEFAULT_MERGE_THRESHOLD = 3

SOURCE_TYPES = ("adblock", "hosts")


class TransformationName(str, Enum):
    REMOVE_COMMENTS = "RemoveComments"
    COMPRESS = "Compress"
    REMOVE_MODIFIERS = "RemoveModifiers"
    VALIDATE = "Validate"
    VALIDATE_ALLOW_IP = "ValidateAllowIp"
    DEDUPLICATE = "Deduplicate"
    INVERT_ALLOW = "InvertAllow"
    REMOVE_EMPTY_LINES = "RemoveEmptyLines"
    TRIM_LINES = "TrimLines"
    INSERT_FINAL_NEW_LINE = "InsertFinalNewLine"
    CONVERT_TO_ASCII = "ConvertToAscii"

    @classmethod
    def parse(cls, name: str) -> "TransformationName":
        try:
            return cls(name)
        except ValueError:
            known = ", ".join(t.value for t in cls)
            raise ConfigurationError(
                f"Unknown transformation {name!r} (expected one of: {known})"
            ) from None


# ----------------------------------------
# Model
# ----------------------------------------
@dataclass
class FilterSettings:
    """Transformations and wildcard filters applied to a rule stream."""

    transformations: list[TransformationName] = field(default_factory=list)
    exclusions: list[str] = field(default_factory=list)
    exclusions_sources: list[str] = field(default_factory=list)
    inclusions: list[str] = field(default_factory=list)
    inclusions_sources: list[str] = field(default_factory=list)


@dataclass
class Source(FilterSettings):
    source: str = ""
    type: str = "adblock"
    name: str | None = None


@dataclass
class OptimizationSettings:
    remove_redundant: bool = True
    optimize_patterns: bool = True
    simplify_modifiers: bool = True
    merge_rules: bool = False
    merge_threshold: int = DEFAULT_MERGE_THRESHOLD


@dataclass
class Configuration(FilterSettings):
    name: str = ""
    sources: list[Source] = field(default_factory=list)
    description: str | None = None
    homepage: str | None = None
    license: str | None = None
    version: str | None = None
    optimization: OptimizationSettings | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "Configuration":
        """Build a configuration from decoded JSON, checking its shape."""
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a JSON object")
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("Configuration 'name' must be a non-empty string")
        raw_sources = data.get("sources")
        if not isinstance(raw_sources, list) or not raw_sources:
            raise ConfigurationError("Configuration 'sources' must be a non-empty list")

        sources = [_source_from_dict(raw, idx) for idx, raw in enumerate(raw_sources)]
        return cls(
            name=name,
            sources=sources,
            description=_optional_str(data, "description"),
            homepage=_optional_str(data, "homepage"),
            license=_optional_str(data, "license"),
            version=_optional_str(data, "version"),
            optimization=_optimization_from_dict(data.get("optimization")),
            **_filter_settings(data, "configuration"),
        )


def _optional_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigurationError(f"'{key}' must be a string")
    return value


def _string_list(data: dict, key: str, where: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"{where}: '{key}' must be a list of strings")
    return list(value)


def _filter_settings(data: dict, where: str) -> dict[str, Any]:
    return {
        "transformations": [
            TransformationName.parse(t)
            for t in _string_list(data, "transformations", where)
        ],
        "exclusions": _string_list(data, "exclusions", where),
        "exclusions_sources": _string_list(data, "exclusions_sources", where),
        "inclusions": _string_list(data, "inclusions", where),
        "inclusions_sources": _string_list(data, "inclusions_sources", where),
    }


def _source_from_dict(raw: Any, idx: int) -> Source:
    where = f"sources[{idx}]"
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{where} must be an object")
    source = raw.get("source")
    if not isinstance(source, str) or not source.strip():
        raise ConfigurationError(f"{where}: 'source' must be a non-empty string")
    kind = raw.get("type", "adblock")
    if kind not in SOURCE_TYPES:
        raise ConfigurationError(
            f"{where}: 'type' must be one of {', '.join(SOURCE_TYPES)}, got {kind!r}"
        )
    return Source(
        source=source.strip(),
        type=kind,
        name=_optional_str(raw, "name"),
        **_filter_settings(raw, where),
    )


def _optimization_from_dict(raw: Any) -> OptimizationSettings | None:
    if raw is None:
        return None
    if raw is True:
        return OptimizationSettings()
    if not isinstance(raw, dict):
        raise ConfigurationError("'optimization' must be an object")
    defaults = OptimizationSettings()
    settings = OptimizationSettings(
        remove_redundant=bool(raw.get("remove_redundant", defaults.remove_redundant)),
        optimize_patterns=bool(raw.get("optimize_patterns", defaults.optimize_patterns)),
        simplify_modifiers=bool(
            raw.get("simplify_modifiers", defaults.simplify_modifiers)
        ),
        merge_rules=bool(raw.get("merge_rules", defaults.merge_rules)),
        merge_threshold=raw.get("merge_threshold", defaults.merge_threshold),
    )
    if not isinstance(settings.merge_threshold, int) or settings.merge_threshold < 2:
        raise ConfigurationError("'merge_threshold' must be an integer >= 2")
    return settings


def load_configuration(path: str | Path) -> Configuration:
    """Read and check a JSON configuration file."""
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {p}") from None
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in {p}: {exc}") from exc
    config = Configuration.from_dict(data)
    logger.debug("Loaded configuration %r with %d sources", config.name, len(config.sources))
    return config
