"""Per-connection browsing state (last directory and selection)"""

import json
import logging
import os
from typing import Optional
from pydantic import BaseModel, Field, ValidationError

from .config import config_dir

logger = logging.getLogger(__name__)


class SessionState(BaseModel):
    host: str
    port: int
    username: str
    current_path: str = Field(default="/")
    selected_index: int = Field(default=0, ge=0)

    @staticmethod
    def state_file(host: str, port: int, username: str, directory: Optional[str] = None) -> str:
        filename = f"session_{username}@{host}_{port}.json"
        return os.path.join(directory or config_dir(), filename)

    def save(self, directory: Optional[str] = None) -> bool:
        path = self.state_file(self.host, self.port, self.username, directory)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(self.model_dump_json(indent=2))
            return True
        except OSError as e:
            logger.error(f"Failed to save session state {path}: {e}")
            return False

    @classmethod
    def load(
        cls, host: str, port: int, username: str, directory: Optional[str] = None
    ) -> Optional["SessionState"]:
        path = cls.state_file(host, port, username, directory)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return cls.model_validate_json(f.read())
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable session state {path}: {e}")
            return None
