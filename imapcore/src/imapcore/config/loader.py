"""Discovery, parsing and caching of the imapcore configuration file.

What:
  Locate ``imapcore.yaml``, parse it with PyYAML, validate it against
  :class:`~imapcore.config.schema.ClientConfig`, and cache the result.

Why:
  The CLI and embedding applications should agree on where connection defaults
  and protocol limits come from. Centralising discovery keeps the precedence
  order in one place and turns every failure into a typed error carrying the
  offending path.

How:
  Resolve candidate paths from an explicit argument, the
  ``IMAPCORE_CONFIG_PATH`` environment variable, and well-known defaults.
  The first existing file wins. When no candidate exists and no explicit path
  was requested, the schema defaults are used.

Interfaces:
  :func:`load_client_config`, :func:`get_client_config`,
  :func:`reset_client_config`, :class:`ConfigLoadError`,
  :class:`ClientConfigError`.

Invariants:
  - An explicitly requested path that does not exist is an error, never a
    silent fallback to defaults.
  - Documents must be mappings and pass strict validation (unknown keys are
    rejected, so a stray ``password`` entry fails loudly).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterable, Optional, Tuple, Union

import yaml
from pydantic import ValidationError as _PydanticValidationError

from .schema import ClientConfig


class ConfigLoadError(Exception):
    """Base error for configuration parsing or validation failures."""


class ClientConfigError(ConfigLoadError):
    """Error raised when ``imapcore.yaml`` cannot be located, read or validated."""


_CONFIG_ENV = "IMAPCORE_CONFIG_PATH"
_DEFAULT_LOCATIONS: Tuple[Path, ...] = (
    Path("imapcore.yaml"),
    Path("~/.config/imapcore/config.yaml"),
    Path("/etc/imapcore/config.yaml"),
)
_CONFIG_CACHE: Optional[Tuple[Optional[Path], ClientConfig]] = None


def _candidate_paths(path: Optional[Path]) -> Iterable[Path]:
    """Yield configuration file locations in priority order.

    The explicit ``path`` comes first, then ``IMAPCORE_CONFIG_PATH``, then the
    default locations. Duplicates are skipped.
    """

    seen: set[Path] = set()
    if path is not None:
        seen.add(path)
        yield path
    env_path = os.environ.get(_CONFIG_ENV)
    if env_path:
        candidate = Path(env_path).expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate
    for default in _DEFAULT_LOCATIONS:
        candidate = default.expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate


def _parse_config_payload(text: str, source: Path) -> dict[str, Any]:
    """Parse YAML text into a mapping ready for validation.

    Raises:
      ClientConfigError: If the YAML is invalid or not a mapping.
    """

    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ClientConfigError(f"Invalid YAML in {source}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ClientConfigError(f"{source} must contain a mapping at the top-level")
    return payload


def _load_from_path(path: Path) -> ClientConfig:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ClientConfigError(f"Configuration file missing: {path}") from exc
    except OSError as exc:  # pragma: no cover - filesystem surface
        raise ClientConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    payload = _parse_config_payload(text, path)
    try:
        return ClientConfig.model_validate(payload)
    except _PydanticValidationError as exc:
        raise ClientConfigError(f"Invalid configuration in {path}: {exc}") from exc


def load_client_config(
    path: Optional[Union[Path, str]] = None,
    *,
    reload: bool = False,
) -> ClientConfig:
    """Resolve, parse, and cache the client configuration.

    What:
      Return the validated :class:`ClientConfig` from the first existing
      candidate file, or the schema defaults when none exists.

    How:
      Consult the cache unless ``reload`` is set or a different explicit path
      is requested, walk the candidate paths, and remember the outcome.

    Args:
      path: Optional explicit location of the configuration file.
      reload: When ``True`` forces a fresh load bypassing the cache.

    Raises:
      ClientConfigError: If the explicit file is missing, or a discovered file
        cannot be parsed or validated.
    """

    global _CONFIG_CACHE

    requested_path = Path(path).expanduser() if isinstance(path, (str, Path)) else None
    if not reload and _CONFIG_CACHE is not None:
        cached_path, cached_config = _CONFIG_CACHE
        if requested_path is None or cached_path == requested_path:
            return cached_config

    if requested_path is not None and not requested_path.exists():
        raise ClientConfigError(f"Configuration file missing: {requested_path}")

    for candidate in _candidate_paths(requested_path):
        if not candidate.exists():
            continue
        config = _load_from_path(candidate)
        _CONFIG_CACHE = (candidate, config)
        return config

    config = ClientConfig()
    _CONFIG_CACHE = (None, config)
    return config


def get_client_config() -> ClientConfig:
    """Return the cached client configuration, loading it on demand."""

    return load_client_config()


def reset_client_config() -> None:
    """Clear the configuration cache so the next call reloads from disk."""

    global _CONFIG_CACHE
    _CONFIG_CACHE = None
