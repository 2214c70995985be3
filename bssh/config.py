"""
Configuration

Application settings (timeouts, chunk size, host-key policy, logging) and the
saved-connection store.
"""

import os
import json
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict, fields
import logging

from .models.connection import SavedConnection

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
CONNECTIONS_FILE = "connections.json"

HOST_KEY_POLICIES = ("accept", "warn", "reject")


def config_dir() -> str:
    """Directory holding config.json, connections.json and session state"""
    override = os.getenv("BSSH_CONFIG_DIR")
    if override:
        return os.path.expanduser(override)
    base = os.getenv("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    return os.path.join(base, "bssh")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes")


@dataclass
class AppConfig:
    """Application settings"""

    log_level: str = "INFO"
    log_file: Optional[str] = None
    connect_timeout: float = 10.0
    inactivity_timeout: float = 300.0
    chunk_size: int = 32768
    term: str = "xterm-256color"
    detach_byte: int = 0x13
    host_key_policy: str = "accept"
    known_hosts_file: Optional[str] = None
    alternate_screen: bool = False

    def __post_init__(self):
        if self.host_key_policy not in HOST_KEY_POLICIES:
            raise ValueError(
                f"host_key_policy must be one of {', '.join(HOST_KEY_POLICIES)}, "
                f"got {self.host_key_policy!r}"
            )
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.detach_byte <= 0xFF:
            raise ValueError("detach_byte must be a single byte value")

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create config from environment variables"""
        return cls(
            log_level=os.getenv("BSSH_LOG_LEVEL", "INFO"),
            log_file=os.getenv("BSSH_LOG_FILE"),
            connect_timeout=float(os.getenv("BSSH_CONNECT_TIMEOUT", "10")),
            inactivity_timeout=float(os.getenv("BSSH_INACTIVITY_TIMEOUT", "300")),
            chunk_size=int(os.getenv("BSSH_CHUNK_SIZE", "32768")),
            term=os.getenv("BSSH_TERM", "xterm-256color"),
            detach_byte=int(os.getenv("BSSH_DETACH_BYTE", "19"), 0),
            host_key_policy=os.getenv("BSSH_HOST_KEY_POLICY", "accept"),
            known_hosts_file=os.getenv("BSSH_KNOWN_HOSTS"),
            alternate_screen=_env_bool("BSSH_ALTERNATE_SCREEN", False),
        )

    @classmethod
    def from_file(cls, config_path: str) -> Optional["AppConfig"]:
        """Environment config overlaid with the keys present in a JSON file"""
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read config file {config_path}: {e}")
            return None

        values = asdict(cls.from_env())
        known = {f.name for f in fields(cls)}
        for key, value in data.items():
            if key in known:
                values[key] = value
            else:
                logger.warning(f"Ignoring unknown config key: {key}")
        return cls(**values)

    def to_file(self, config_path: str) -> bool:
        """Save config to a JSON file"""
        try:
            os.makedirs(os.path.dirname(config_path) or ".", exist_ok=True)
            with open(config_path, "w", encoding="utf-8") as f:
                json.dump(asdict(self), f, indent=2, ensure_ascii=False)
            return True
        except OSError as e:
            logger.error(f"Failed to save config file {config_path}: {e}")
            return False

    def resolved_log_file(self) -> str:
        return os.path.expanduser(self.log_file or os.path.join(config_dir(), "bssh.log"))


class ConfigManager:
    """Loads the app config and owns the saved-connection store"""

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory or config_dir()
        self.config_path = os.path.join(self.directory, CONFIG_FILE)
        self.connections_path = os.path.join(self.directory, CONNECTIONS_FILE)
        self.config: AppConfig = self._load_config()

    def _load_config(self) -> AppConfig:
        config = AppConfig.from_env()

        if os.path.exists(self.config_path):
            file_config = AppConfig.from_file(self.config_path)
            if file_config:
                config = file_config

        logger.info(f"Config loaded, log level: {config.log_level}")
        return config

    def list_connections(self) -> List[SavedConnection]:
        """Saved connections in file order; an unreadable store reads as empty"""
        if not os.path.exists(self.connections_path):
            return []
        try:
            with open(self.connections_path, "r", encoding="utf-8") as f:
                data: List[Dict[str, Any]] = json.load(f)
            return [SavedConnection(**item) for item in data]
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Failed to read saved connections: {e}")
            return []

    def get_connection(self, name: str) -> Optional[SavedConnection]:
        for conn in self.list_connections():
            if conn.name == name:
                return conn
        return None

    def _write_connections(self, connections: List[SavedConnection]) -> bool:
        try:
            os.makedirs(self.directory, exist_ok=True)
            with open(self.connections_path, "w", encoding="utf-8") as f:
                json.dump(
                    [conn.model_dump() for conn in connections],
                    f,
                    indent=2,
                    ensure_ascii=False,
                )
            return True
        except OSError as e:
            logger.error(f"Failed to save connections: {e}")
            return False

    def add_connection(self, connection: SavedConnection) -> bool:
        """Add a connection, replacing any existing one with the same name"""
        connections = [c for c in self.list_connections() if c.name != connection.name]
        connections.append(connection)
        if self._write_connections(connections):
            logger.info(f"Saved connection {connection.name}: {connection.display_name()}")
            return True
        return False

    def remove_connection(self, name: str) -> bool:
        connections = self.list_connections()
        remaining = [c for c in connections if c.name != name]
        if len(remaining) == len(connections):
            return False
        return self._write_connections(remaining)
