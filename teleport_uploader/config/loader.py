"""Load uploader configuration from a YAML profile and the environment."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from teleport_uploader.config.uploader_config import UploaderConfig
from teleport_uploader.const import (
    CONFIG_DIR,
    CONFIG_ENCODING,
    CONFIG_FILE,
    ENV_PREFIX,
)
from teleport_uploader.exceptions import ConfigLoadError, ConfigValidationError

logger = logging.getLogger(__name__)


def default_profile_path() -> Path:
    """Return the path of the default uploader profile."""
    return CONFIG_DIR / CONFIG_FILE


def _read_profile(profile_path: Path) -> dict[str, Any]:
    """Read a YAML profile into a dictionary.

    Args:
        profile_path: Path to the YAML profile.

    Returns:
        Mapping of configuration field names to raw values.

    Raises:
        ConfigLoadError: If the file is missing, unreadable or not a mapping.
    """
    try:
        with profile_path.open("r", encoding=CONFIG_ENCODING) as profile_file:
            profile_data = yaml.safe_load(profile_file) or {}
    except FileNotFoundError as exc:
        raise ConfigLoadError(f"Profile {str(profile_path)!r} not found.") from exc
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigLoadError(
            f"Failed to read profile {str(profile_path)!r}: {exc}"
        ) from exc

    if not isinstance(profile_data, dict):
        raise ConfigLoadError(
            f"Profile {str(profile_path)!r} must contain a mapping at top level."
        )
    return profile_data


def _env_overrides(environ: Mapping[str, str]) -> dict[str, str]:
    """Collect ``TELEPORT_<FIELD>`` environment variables.

    ``TELEPORT_API_BASE`` maps to ``api_base``, ``TELEPORT_CLIENT_ID`` to
    ``client_id`` and so on for every field of UploaderConfig.
    """
    overrides: dict[str, str] = {}
    for field_name in UploaderConfig.model_fields:
        value = environ.get(f"{ENV_PREFIX}{field_name.upper()}")
        if value is not None:
            overrides[field_name] = value
    # Name used by the hosted functions for the scope variable.
    scope = environ.get(f"{ENV_PREFIX}OAUTH_SCOPE")
    if scope is not None and "scope" not in overrides:
        overrides["scope"] = scope
    return overrides


def load_config(
    profile_path: Path | str | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> UploaderConfig:
    """Build an UploaderConfig from layered sources.

    Priority order (highest to lowest):
    1. ``overrides``
    2. ``TELEPORT_*`` environment variables
    3. YAML profile (``profile_path``, or the default profile if it exists)
    4. Model defaults

    Args:
        profile_path: Explicit YAML profile. Must exist when given.
        overrides: Field values that take precedence over everything else.
        environ: Environment mapping, defaults to ``os.environ``.

    Returns:
        Validated uploader configuration.

    Raises:
        ConfigLoadError: If an explicit profile cannot be read.
        ConfigValidationError: If the merged values are invalid.
    """
    data: dict[str, Any] = {}

    if profile_path is not None:
        data.update(_read_profile(Path(profile_path)))
    elif default_profile_path().exists():
        data.update(_read_profile(default_profile_path()))

    data.update(_env_overrides(os.environ if environ is None else environ))

    if overrides:
        data.update(
            {key: value for key, value in overrides.items() if value is not None}
        )

    unknown = sorted(set(data) - set(UploaderConfig.model_fields))
    if unknown:
        logger.warning("Ignoring unknown configuration keys: %s", ", ".join(unknown))
        for key in unknown:
            data.pop(key)

    try:
        return UploaderConfig(**data)
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        raise ConfigValidationError(errors) from exc
