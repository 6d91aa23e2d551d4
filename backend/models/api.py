"""API request models for Parley Chat API."""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class GenerateRequest(BaseModel):
    """Body of POST /generate."""
    contents: Optional[str] = None
    model: Optional[str] = None


class ChatRequest(BaseModel):
    """Body of POST /chat."""
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    message: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    model: Optional[str] = None
