"""Config file loading and auto-discovery for the broker.

Searches for ``atlas-broker.yaml`` in the current directory and parent
directories, parses it, and resolves all relative paths against the
config file's location. A handful of ``ATLAS_BROKER_*`` environment
variables override the file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from atlas_broker.atlas.client import DEFAULT_BASE_URL, DEFAULT_TIMEOUT
from atlas_broker.errors import ConfigurationError
from atlas_broker.models import Credentials, Mode, Whitelist

CONFIG_FILENAME = "atlas-broker.yaml"

ENV_OVERRIDES = {
    "ATLAS_BROKER_MODE": "mode",
    "ATLAS_BROKER_BASE_URL": "base_url",
    "ATLAS_BROKER_CREDENTIALS": "credentials",
    "ATLAS_BROKER_WHITELIST": "whitelist",
    "ATLAS_BROKER_TEMPLATEDIR": "templates",
}


@dataclass(frozen=True)
class BrokerConfig:
    """Parsed broker configuration."""

    config_path: Path | None = None
    mode: Mode = Mode.BASIC_AUTH
    base_url: str = DEFAULT_BASE_URL
    credentials: str | None = None
    whitelist: str | None = None
    templates: str | None = None
    instance_store: str | None = None
    timeout: float = DEFAULT_TIMEOUT


def find_config(start: Path | None = None) -> Path | None:
    """Walk from *start* (default ``cwd()``) up to the filesystem root.

    Returns the first ``atlas-broker.yaml`` found, or ``None``.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
    environ: dict[str, str] | None = None,
) -> BrokerConfig:
    """Load the broker config file and apply environment overrides.

    Resolution order:

    1. Explicit *path* (error if it doesn't exist).
    2. Auto-discover by walking parent directories.
    3. Start from an empty ``BrokerConfig`` (all defaults).
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).resolve()
        if not config_path.is_file():
            msg = f"Config file not found: {config_path}"
            raise FileNotFoundError(msg)
    elif auto_discover:
        config_path = find_config()

    config = _parse_config(config_path) if config_path else BrokerConfig()
    return _apply_env(config, os.environ if environ is None else environ)


def _parse_config(config_path: Path) -> BrokerConfig:
    """Read and parse a YAML config file, resolving relative paths."""
    text = config_path.read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}

    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
        raise ConfigurationError(msg)

    base = config_path.parent

    def _resolve(key: str) -> str | None:
        val = data.get(key)
        if val is None:
            return None
        return str((base / val).resolve())

    return BrokerConfig(
        config_path=config_path,
        mode=parse_mode(data.get("mode", Mode.BASIC_AUTH)),
        base_url=data.get("base_url", DEFAULT_BASE_URL),
        credentials=_resolve("credentials"),
        whitelist=_resolve("whitelist"),
        templates=_resolve("templates"),
        instance_store=_resolve("instance_store"),
        timeout=float(data.get("timeout", DEFAULT_TIMEOUT)),
    )


def _apply_env(config: BrokerConfig, environ: Any) -> BrokerConfig:
    updates: dict[str, Any] = {}
    for var, field in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            updates[field] = parse_mode(value) if field == "mode" else value
    return replace(config, **updates) if updates else config


def parse_mode(value: str) -> Mode:
    try:
        return Mode(value)
    except ValueError:
        allowed = ", ".join(m.value for m in Mode)
        raise ConfigurationError(f"Unknown broker mode {value!r}. Available: {allowed}") from None


def _read_document(path: str | Path, what: str) -> Any:
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"{what} file not found: {path}")
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e


def load_credentials(path: str | Path) -> Credentials:
    """Load credentials from a YAML or JSON file.

    Expected shape::

        broker: {username: ..., password: ...}
        projects:
          <groupID>: {publicKey: ..., privateKey: ..., desc: ...}
        orgs:
          <orgID>: {publicKey: ..., privateKey: ...}
    """
    raw = _read_document(path, "Credentials")
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Credentials file must contain a mapping: {path}")
    try:
        return Credentials.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid credentials in {path}: {e}") from e


def load_whitelist(path: str | Path) -> Whitelist:
    """Load a provider -> plan names whitelist from a YAML or JSON file."""
    raw = _read_document(path, "Whitelist")
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Whitelist file must contain a mapping: {path}")

    whitelist: Whitelist = {}
    for provider, plans in raw.items():
        if plans is None:
            plans = []
        if not isinstance(plans, list) or not all(isinstance(p, str) for p in plans):
            raise ConfigurationError(
                f"Whitelist entry for {provider!r} must be a list of plan names: {path}"
            )
        whitelist[str(provider)] = plans
    return whitelist
