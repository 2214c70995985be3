from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class CommandResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    command: str = Field(..., description="Executed command")
    output: str = Field(default="", description="Captured PTY output")
    exit_code: Optional[int] = Field(
        default=None, description="Exit status, None if the server sent none"
    )
    execution_time: float = Field(default=0.0, description="Execution time in seconds")
    timestamp: datetime = Field(default_factory=datetime.now)
