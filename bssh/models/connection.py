import os
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PORT = 22
DEFAULT_IDENTITY = os.path.join("~", ".ssh", "id_rsa")


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ConnectionParams(BaseModel):
    """Identifies one remote login; immutable once a session is established"""

    model_config = ConfigDict(frozen=True)

    host: str = Field(..., min_length=1, description="Remote server hostname or IP")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="SSH port")
    username: str = Field(..., min_length=1, description="SSH username")
    identity_key_path: Optional[str] = Field(
        default=None, description="Private key file; defaults to ~/.ssh/id_rsa"
    )

    @classmethod
    def parse(
        cls,
        destination: str,
        port: Optional[int] = None,
        identity_key_path: Optional[str] = None,
    ) -> "ConnectionParams":
        """Parse ``[user@]host[:port]``; an explicit ``port`` wins over the string"""
        user_host = destination
        parsed_port = DEFAULT_PORT
        if ":" in destination:
            user_host, _, port_str = destination.rpartition(":")
            try:
                parsed_port = int(port_str)
            except ValueError:
                raise ValueError(f"Invalid port number: {port_str!r}")

        if "@" in user_host:
            username, _, host = user_host.partition("@")
        else:
            username = os.environ.get("USER") or "root"
            host = user_host

        return cls(
            host=host,
            port=port if port is not None else parsed_port,
            username=username,
            identity_key_path=identity_key_path,
        )

    def key_path(self) -> str:
        """Resolved identity path, falling back to the default identity"""
        return os.path.expanduser(self.identity_key_path or DEFAULT_IDENTITY)

    def display_name(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"


class SavedConnection(BaseModel):
    name: str = Field(..., min_length=1, description="Saved connection name")
    host: str = Field(..., description="Remote server hostname or IP")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    username: str = Field(..., description="SSH username")
    identity_file: Optional[str] = Field(default=None, description="Private key file")

    def display_name(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"

    def to_params(self) -> ConnectionParams:
        return ConnectionParams(
            host=self.host,
            port=self.port,
            username=self.username,
            identity_key_path=self.identity_file,
        )
