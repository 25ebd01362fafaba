"""
Runtime settings (``posting_spine.config``).

Responsibility
--------------
Loads the handful of knobs the posting spine needs at startup -- database
URL, pool sizing, default currency, audit-context defaults and log level --
from an optional YAML file, then applies ``POSTING_SPINE_*`` environment
overrides.

Architecture position
---------------------
**Infrastructure** -- consumed by ``db.engine.Database.from_settings`` and by
applications wiring the services.  No dependency on models or services.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or unparsable value  -> ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

ENV_PREFIX = "POSTING_SPINE_"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True)
class SpineSettings:
    """Immutable runtime settings.

    Defaults target a throwaway in-memory SQLite database so that the
    library is importable and testable with no configuration at all.
    """

    database_url: str = "sqlite+pysqlite:///:memory:"
    echo_sql: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    default_currency: str = "USD"
    default_where_system: str = "posting-service"
    log_level: str = "INFO"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SpineSettings":
        """Build settings from a plain mapping, coercing scalar types.

        Raises:
            ValueError: on unknown keys or values that cannot be coerced.
        """
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")
        values = {
            name: _coerce(name, known[name].type, raw) for name, raw in data.items()
        }
        return cls(**values)


def _coerce(name: str, type_name: Any, raw: Any) -> Any:
    # Annotations are strings under ``from __future__ import annotations``.
    kind = type_name if isinstance(type_name, str) else getattr(type_name, "__name__", "")
    if kind == "bool":
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ValueError(f"Setting {name!r} expects a boolean, got {raw!r}")
    if kind == "int":
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Setting {name!r} expects an integer, got {raw!r}") from exc
    return str(raw)


def load_yaml_settings(path: Path) -> dict[str, Any]:
    """Load a YAML settings file; an empty file yields an empty dict.

    The file may nest everything under a top-level ``posting_spine`` key.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    if "posting_spine" in data and isinstance(data["posting_spine"], dict):
        data = data["posting_spine"]
    return data


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Collect ``POSTING_SPINE_<FIELD>`` overrides from the environment."""
    environ = os.environ if environ is None else environ
    names = {f.name for f in fields(SpineSettings)}
    overrides: dict[str, str] = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name in names:
            overrides[name] = value
    return overrides


def load_settings(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> SpineSettings:
    """Load settings: defaults, then YAML file (if any), then environment.

    ``POSTING_SPINE_CONFIG`` names the YAML file when ``path`` is omitted.
    """
    environ = os.environ if environ is None else environ
    if path is None:
        path = environ.get(f"{ENV_PREFIX}CONFIG")

    settings = SpineSettings()
    if path is not None:
        settings = SpineSettings.from_mapping(load_yaml_settings(Path(path)))

    overrides = env_overrides(environ)
    if overrides:
        coerced = SpineSettings.from_mapping(overrides)
        settings = replace(settings, **{k: getattr(coerced, k) for k in overrides})
    return settings
