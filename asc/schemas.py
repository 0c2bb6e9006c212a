from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class Conversation(BaseModel):
    id: str = Field(..., description="Timestamp id, YYYYMMDDHHMMSS")
    timestamp: datetime
    message: str
    response: str
    file_path: str = ""
    context: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json(indent=2, exclude_none=True)
