#!/usr/bin/env python3
"""
Client configuration

Loads the exchange endpoint and session options from a TOML file:

    [server]
    address = "127.0.0.1"
    port = 3000
    read_timeout = 5.0

    [recovery]
    max_passes = 2
    first_sequence = 1
    max_missing = 65536

    [output]
    path = "output.json"

The legacy JSON form {"ServerAddress": "...", "ServerPort": 3000} is still
accepted for files ending in .json.
"""

import json
import logging
from pathlib import Path
from dataclasses import dataclass, replace
from typing import Dict, Any, Optional, Union

import toml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILES = ('config.toml', 'config.json')
DEFAULT_MAX_RECOVERY_PASSES = 2
DEFAULT_OUTPUT_PATH = 'output.json'
DEFAULT_MAX_MISSING = 65536


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class ClientConfig:
    """Validated client configuration for one run"""
    server_address: str
    server_port: int
    read_timeout: Optional[float] = None
    max_recovery_passes: int = DEFAULT_MAX_RECOVERY_PASSES
    first_sequence: Optional[int] = None
    max_missing: int = DEFAULT_MAX_MISSING
    output_path: str = DEFAULT_OUTPUT_PATH

    def __post_init__(self):
        if not isinstance(self.server_address, str) or not self.server_address.strip():
            raise ConfigurationError("Server address is missing")
        if not _is_int(self.server_port):
            raise ConfigurationError(f"Server port must be an integer, got {self.server_port!r}")
        if not 1 <= self.server_port <= 65535:
            raise ConfigurationError(f"Server port {self.server_port} outside 1-65535")
        if self.read_timeout is not None:
            if not (_is_int(self.read_timeout) or isinstance(self.read_timeout, float)):
                raise ConfigurationError(f"read_timeout must be a number, got {self.read_timeout!r}")
            if self.read_timeout <= 0:
                raise ConfigurationError("read_timeout must be positive")
        if not _is_int(self.max_recovery_passes):
            raise ConfigurationError(
                f"max_recovery_passes must be an integer, got {self.max_recovery_passes!r}")
        if self.max_recovery_passes < 0:
            raise ConfigurationError("max_recovery_passes must be >= 0")
        if self.first_sequence is not None and not _is_int(self.first_sequence):
            raise ConfigurationError(
                f"first_sequence must be an integer, got {self.first_sequence!r}")
        if not _is_int(self.max_missing) or self.max_missing < 1:
            raise ConfigurationError(f"max_missing must be a positive integer, got {self.max_missing!r}")
        if not isinstance(self.output_path, str) or not self.output_path:
            raise ConfigurationError(f"Output path must be a non-empty string, got {self.output_path!r}")

    def with_overrides(self, **overrides) -> 'ClientConfig':
        """Copy with non-None overrides applied (used for CLI flags)"""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigurationError(f"[{name}] must be a table, got {section!r}")
    return section


def _from_toml(data: Dict[str, Any]) -> ClientConfig:
    server = _section(data, 'server')
    recovery = _section(data, 'recovery')
    output = _section(data, 'output')

    if 'address' not in server or 'port' not in server:
        raise ConfigurationError("[server] section must define 'address' and 'port'")

    return ClientConfig(
        server_address=server['address'],
        server_port=server['port'],
        read_timeout=server.get('read_timeout'),
        max_recovery_passes=recovery.get('max_passes', DEFAULT_MAX_RECOVERY_PASSES),
        first_sequence=recovery.get('first_sequence'),
        max_missing=recovery.get('max_missing', DEFAULT_MAX_MISSING),
        output_path=output.get('path', DEFAULT_OUTPUT_PATH),
    )


def _from_legacy_json(data: Dict[str, Any]) -> ClientConfig:
    if 'ServerAddress' not in data or 'ServerPort' not in data:
        raise ConfigurationError("JSON config must define 'ServerAddress' and 'ServerPort'")

    return ClientConfig(
        server_address=data['ServerAddress'],
        server_port=data['ServerPort'],
        read_timeout=data.get('ReadTimeout'),
        max_recovery_passes=data.get('MaxRecoveryPasses', DEFAULT_MAX_RECOVERY_PASSES),
        output_path=data.get('OutputPath', DEFAULT_OUTPUT_PATH),
    )


def load_config(config_path: Union[str, Path]) -> ClientConfig:
    """
    Load and validate a configuration file.

    Args:
        config_path: Path to a .toml file (or legacy .json file)

    Returns:
        ClientConfig

    Raises:
        ConfigurationError: If the file is missing, unparseable or invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r') as f:
            if config_path.suffix == '.json':
                data = json.load(f)
            else:
                data = toml.load(f)
    except (toml.TomlDecodeError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path}: expected a table of settings")

    if config_path.suffix == '.json':
        config = _from_legacy_json(data)
    else:
        config = _from_toml(data)

    logger.info(f"Configuration loaded: IP = {config.server_address}, Port = {config.server_port}")
    return config


def find_default_config(search_dir: Union[str, Path] = '.') -> Optional[Path]:
    """Return the first of config.toml / config.json present in search_dir"""
    for name in DEFAULT_CONFIG_FILES:
        candidate = Path(search_dir) / name
        if candidate.exists():
            return candidate
    return None
