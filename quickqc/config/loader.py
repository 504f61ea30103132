"""
YAML configuration loader.

Search precedence (first match wins):

1. An explicit path (``--config`` on the CLI).
2. ``<dataset>/code/config/quickqc.yaml`` – project-local override.
3. The packaged default shipped inside the wheel.
"""

from __future__ import annotations

from importlib.resources import as_file, files
from pathlib import Path
from typing import Optional

import structlog
import yaml
from pydantic import ValidationError

from quickqc.utils.errors import ConfigurationError

from .schema import QcConfig

log = structlog.get_logger()

CONFIG_NAME = "quickqc.yaml"
_DEFAULT = files("quickqc.resources") / "default_qc.yaml"


def _dataset_local(root: Optional[Path], name: str) -> Optional[Path]:
    """Return ``<root>/code/config/<name>`` or *None* when *root* is ``None``."""
    if root is None:
        return None
    return Path(root).expanduser().resolve() / "code" / "config" / name


def _load_yaml(path: Path) -> dict:
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"{path} is not valid YAML – {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    return data


def resolve_config_path(
    explicit: Optional[Path], dataset_root: Optional[Path]
) -> Optional[Path]:
    """Return the YAML to read, or *None* to fall back to the packaged file.

    Raises:
        ConfigurationError: An explicit path was given but does not exist.
    """
    if explicit is not None:
        explicit = Path(explicit).expanduser().resolve()
        if not explicit.is_file():
            raise ConfigurationError(f"Config file not found: {explicit}")
        return explicit
    local = _dataset_local(dataset_root, CONFIG_NAME)
    if local is not None and local.is_file():
        return local
    return None


def load_config(
    *,
    config_path: Optional[str | Path] = None,
    dataset_root: Optional[str | Path] = None,
) -> QcConfig:
    """Return a validated :class:`QcConfig`.

    Args:
        config_path: Explicit YAML path.  ``None`` triggers the search order
            described in the module doc-string.
        dataset_root: Dataset root used for the project-local override.

    Raises:
        ConfigurationError: The YAML cannot be read or fails validation.
    """
    root = Path(dataset_root).expanduser().resolve() if dataset_root else None
    path = resolve_config_path(Path(config_path) if config_path else None, root)

    if path is None:
        with as_file(_DEFAULT) as p:
            data = _load_yaml(Path(p))
        source = "packaged"
    else:
        data = _load_yaml(path)
        source = str(path)

    try:
        cfg = QcConfig(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration – {exc}") from exc
    log.debug("config-loaded", source=source)
    return cfg
