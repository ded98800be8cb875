"""Installer configuration.

Options are plain data: which extensions to try, which manifest fields
name a package's entry point, and the reserved file and directory names.
Hooks (fetch, override, fallback) are callables and live on the
Installer instead.

Settings can be loaded from YAML, scope-aware like the rest of the tool:
1. project (.moduletree/settings.yaml) - committed, team-shared
2. global (~/.moduletree/settings.yaml) - user defaults

Only the ``moduletree:`` section of a settings file is read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".js", ".json")
DEFAULT_MAIN_FIELDS = ("main",)
SETTINGS_SECTION = "moduletree"


class InstallerOptions(BaseModel):
    """Resolution parameters for an installer or for one installed subtree.

    Attributes:
        extensions: Suffixes tried, in order, for the last identifier segment
        main_fields: Manifest fields consulted, in priority order, when an
            identifier resolves to a directory
        manifest_name: Reserved per-directory manifest file name
        dependency_dir: Reserved child directory searched by bare identifiers
        index_name: Default entry file of a directory (extensions applied)
    """

    model_config = ConfigDict(frozen=True)

    extensions: tuple[str, ...] = Field(default=DEFAULT_EXTENSIONS)
    main_fields: tuple[str, ...] = Field(default=DEFAULT_MAIN_FIELDS)
    manifest_name: str = "package.json"
    dependency_dir: str = "node_modules"
    index_name: str = "index"

    @field_validator("extensions")
    @classmethod
    def _extensions_have_suffix_form(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for ext in value:
            if not ext or "/" in ext:
                raise ValueError(f"Invalid extension {ext!r}: must be a non-empty suffix without '/'")
        return value

    @field_validator("manifest_name", "dependency_dir", "index_name")
    @classmethod
    def _single_segment(cls, value: str) -> str:
        if not value or "/" in value or value in (".", ".."):
            raise ValueError(f"Invalid reserved name {value!r}: must be a single path segment")
        return value

    @classmethod
    def from_settings(cls, settings: dict[str, Any]) -> InstallerOptions:
        """Build options from a merged settings mapping.

        Args:
            settings: Full settings dict; only the ``moduletree`` section is used

        Returns:
            InstallerOptions with defaults for anything not configured

        Raises:
            pydantic.ValidationError: A configured value is invalid
        """
        section = settings.get(SETTINGS_SECTION) or {}
        return cls.model_validate(section)

    def merged_with(self, overrides: InstallerOptions | dict[str, Any] | None) -> InstallerOptions:
        """Return a copy with explicitly set fields of ``overrides`` applied."""
        if overrides is None:
            return self
        if isinstance(overrides, InstallerOptions):
            overrides = overrides.model_dump(exclude_unset=True)
        return self.model_copy(update=dict(overrides))


def coerce_options(options: InstallerOptions | dict[str, Any] | None) -> InstallerOptions | None:
    """Accept options as a model, a plain dict, or None."""
    if options is None or isinstance(options, InstallerOptions):
        return options
    return InstallerOptions.model_validate(options)


@dataclass
class SettingsPaths:
    """Standard paths for settings files."""

    global_settings: Path
    project_settings: Path

    @classmethod
    def default(cls) -> SettingsPaths:
        """Create default paths for the standard layout."""
        return cls(
            global_settings=Path.home() / ".moduletree" / "settings.yaml",
            project_settings=Path.cwd() / ".moduletree" / "settings.yaml",
        )


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dicts, overlay wins."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        content = yaml.safe_load(f) or {}
    if not isinstance(content, dict):
        logger.warning(f"[config:load] Ignoring {path}: top level is not a mapping")
        return {}
    return content


def load_settings(paths: SettingsPaths | None = None) -> dict[str, Any]:
    """Load and merge settings from all scopes (project overrides global)."""
    paths = paths or SettingsPaths.default()
    result: dict[str, Any] = {}
    for path in [paths.global_settings, paths.project_settings]:
        content = _read_yaml(path)
        if content:
            logger.debug(f"[config:load] Merging settings from {path}")
            result = _deep_merge(result, content)
    return result


def load_options(path: Path | str | None = None) -> InstallerOptions:
    """Load InstallerOptions from one settings file, or from the default scopes.

    Args:
        path: Explicit settings file; when None, global and project scopes are merged

    Returns:
        InstallerOptions
    """
    if path is not None:
        settings = _read_yaml(Path(path))
    else:
        settings = load_settings()
    return InstallerOptions.from_settings(settings)
