"""
Configuration loader — reads runbook.yml into domain models.

Reads YAML, applies host overrides from the command line, substitutes
`${name}` variables into step commands, validates against the Pydantic
schemas, and returns a typed Runbook.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from string import Template
from typing import Any

import yaml
from pydantic import ValidationError

from hostforge.core.engine.errors import HostforgeError
from hostforge.core.models.runbook import Runbook

logger = logging.getLogger(__name__)

# Default config filename
RUNBOOK_FILE = "runbook.yml"


class ConfigError(HostforgeError):
    """Raised when the runbook is invalid or missing."""


class _VarTemplate(Template):
    """Only `${name}` with a lower-case name is a variable.

    Bare `$name`, `$$` and upper-case `${NAME}` stay untouched so that
    shell variables in step commands reach the shell that runs them.
    Upper-case names are never looked up in the operator's environment,
    which keeps tokens out of command lines and logs.
    """

    flags = 0
    pattern = r"""
    \$(?:
      (?P<escaped>(?!)) |
      (?P<named>(?!)) |
      \{(?P<braced>[_a-z][_a-z0-9]*)\} |
      (?P<invalid>(?!))
    )
    """


def substitute(value: Any, variables: dict[str, str]) -> Any:
    """Substitute `${name}` in every string of a YAML structure.

    Unknown names are left as they are.
    """
    if isinstance(value, str):
        return _VarTemplate(value).safe_substitute(variables)
    if isinstance(value, list):
        return [substitute(v, variables) for v in value]
    if isinstance(value, dict):
        return {k: substitute(v, variables) for k, v in value.items()}
    return value


def find_runbook_file(start_dir: Path | None = None) -> Path | None:
    """Search for runbook.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to runbook.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / RUNBOOK_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def resolve_runbook_path(path: Path | None = None) -> Path:
    """Explicit path, or the nearest runbook.yml above the cwd.

    Raises:
        ConfigError: No runbook could be found.
    """
    if path is None:
        path = find_runbook_file()

    if path is None:
        raise ConfigError(f"No {RUNBOOK_FILE} found. Create one, or specify --config.")

    if not path.is_file():
        raise ConfigError(f"Runbook not found: {path}")

    return path


def _builtin_vars(host: dict[str, Any]) -> dict[str, str]:
    def text(key: str, default: Any = "") -> str:
        value = host.get(key)
        return default if value is None else str(value)

    return {
        "host_address": text("address", "localhost"),
        "host_user": text("user"),
        "host_port": text("port", "22"),
        "host_identity": text("identity_file"),
    }


def load_runbook(
    path: Path | None = None,
    host_overrides: dict[str, Any] | None = None,
) -> Runbook:
    """Load and validate a runbook.

    Args:
        path: Explicit path to runbook.yml. If None, searches upward.
        host_overrides: Host fields set on the command line; None values
            are ignored.

    Returns:
        Validated Runbook model.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    path = resolve_runbook_path(path)
    logger.debug("Loading runbook from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    data.setdefault("name", path.parent.name)

    host = data.get("host") or {}
    if not isinstance(host, dict):
        raise ConfigError(f"'host' in {path} must be a mapping")
    for key, value in (host_overrides or {}).items():
        if value is not None:
            host[key] = value

    runbook_vars = data.get("vars") or {}
    if not isinstance(runbook_vars, dict):
        raise ConfigError(f"'vars' in {path} must be a mapping")

    # Runbook vars win over built-ins, built-ins over the environment
    variables = dict(os.environ)
    host = substitute(host, {**variables, **_builtin_vars(host)})
    variables.update(_builtin_vars(host))
    resolved_vars = {str(k): substitute(str(v), variables) for k, v in runbook_vars.items()}
    variables.update(resolved_vars)

    data["host"] = host
    data["vars"] = resolved_vars
    data["steps"] = substitute(data.get("steps") or [], variables)

    try:
        runbook = Runbook.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid runbook {path}: {e}") from e

    logger.info("Loaded runbook '%s' with %d steps", runbook.name, len(runbook.steps))
    return runbook


def runbook_root(config_path: Path) -> Path:
    """Directory the runbook lives in; `.state/` is kept there."""
    return config_path.parent.resolve()
