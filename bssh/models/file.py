from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class TransferDirection(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"


class FileEntry(BaseModel):
    """Snapshot of one directory entry; request a fresh listing after any change"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Entry name")
    path: str = Field(..., description="Full remote path")
    is_dir: bool = Field(default=False, description="Whether the entry is a directory")
    size: int = Field(default=0, description="Size in bytes")
    modified_time: Optional[datetime] = Field(
        default=None, description="Last modified time"
    )
    permissions: Optional[str] = Field(
        default=None, description="Mode string (e.g. 'drwxr-xr-x')"
    )

    @property
    def is_parent(self) -> bool:
        return self.name == ".."


class TransferResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    direction: TransferDirection
    local_path: str
    remote_path: str
    bytes_transferred: int = 0
    transfer_time: float = 0.0
