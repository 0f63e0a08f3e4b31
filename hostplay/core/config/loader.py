"""
Configuration loader: reads playbooks and engine settings from YAML.

Playbook files may hold several YAML documents, each a list of plays.
Everything is validated against the pydantic models before the engine
sees it, so schema problems surface as one ``PlaybookError`` with the
file path in the message rather than as a mid-run crash.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from hostplay.core.models.playbook import Playbook
from hostplay.core.models.settings import EngineSettings

logger = logging.getLogger(__name__)

# Default settings filename
SETTINGS_FILE = "hostplay.yml"


class ConfigError(Exception):
    """Raised when engine configuration is invalid or missing."""


class PlaybookError(ConfigError):
    """Raised when a playbook cannot be read or does not validate."""


class LoopSourceError(PlaybookError):
    """Raised when a loop source does not resolve to a list."""


def find_settings_file(start_dir: Path | None = None) -> Path | None:
    """Search for hostplay.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to hostplay.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / SETTINGS_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_settings(path: Path | None = None) -> EngineSettings:
    """Load engine settings; defaults when no file is found.

    Raises:
        ConfigError: If the file exists but is invalid.
    """
    if path is None:
        path = find_settings_file()
    if path is None:
        logger.debug("No %s found, using default settings", SETTINGS_FILE)
        return EngineSettings()
    if not path.is_file():
        raise ConfigError(f"Settings file not found: {path}")

    data = _read_yaml(path, ConfigError)
    if data is None:
        return EngineSettings()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # Allow the settings to sit under a top-level "hostplay" key
    settings_data = data.get("hostplay", data)
    try:
        settings = EngineSettings.model_validate(settings_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings in {path}: {e}") from e

    logger.debug("Loaded settings from %s", path)
    return settings


def load_playbooks(path: Path) -> list[Playbook]:
    """Load every play from a playbook file.

    Args:
        path: Path to a YAML playbook file.

    Returns:
        Plays in file order.

    Raises:
        PlaybookError: If the file is missing, is not valid YAML, or a
            play does not validate.
    """
    if not path.is_file():
        raise PlaybookError(f"Playbook not found: {path}")

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise PlaybookError(f"Cannot read {path}: {e}") from e

    try:
        documents = list(yaml.safe_load_all(raw))
    except yaml.YAMLError as e:
        raise PlaybookError(f"Invalid YAML in {path}: {e}") from e

    base_dir = str(path.parent.resolve())
    plays: list[Playbook] = []
    for doc_index, document in enumerate(documents, start=1):
        if document is None:
            continue
        if isinstance(document, dict):
            document = [document]
        if not isinstance(document, list):
            raise PlaybookError(
                f"Document {doc_index} in {path} must be a list of plays, "
                f"got {type(document).__name__}"
            )
        for entry in document:
            plays.append(_parse_play(entry, base_dir, path))

    if not plays:
        raise PlaybookError(f"No plays found in {path}")

    logger.info("Loaded %d play(s) from %s", len(plays), path)
    return plays


def _parse_play(entry: Any, base_dir: str, path: Path) -> Playbook:
    if not isinstance(entry, dict):
        raise PlaybookError(f"Play in {path} must be a mapping, got {type(entry).__name__}")
    data = dict(entry)
    data.setdefault("base_dir", base_dir)
    try:
        return Playbook.model_validate(data)
    except ValidationError as e:
        name = entry.get("name") or "<unnamed>"
        raise PlaybookError(f"Invalid play '{name}' in {path}: {e}") from e


def _read_yaml(path: Path, error_cls: type[ConfigError]) -> Any:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise error_cls(f"Cannot read {path}: {e}") from e
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise error_cls(f"Invalid YAML in {path}: {e}") from e
