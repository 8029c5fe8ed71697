"""Pydantic schemas for API request/response validation."""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts both camelCase (wire) and snake_case field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==================== Chat Schemas ====================

class ChatFile(BaseModel):
    """A file attached to a chat request."""
    model_config = ConfigDict(extra="allow")

    file_id: str


class ChatRequest(CamelModel):
    """Request schema for POST /agents/chat."""
    text: str = Field(..., min_length=1)
    conversation_id: Optional[str] = None
    parent_message_id: Optional[str] = None
    override_parent_message_id: Optional[str] = None
    is_regenerate: bool = False
    is_continued: bool = False
    edited_content: Optional[str] = None
    response_message_id: Optional[str] = None
    endpoint: Optional[str] = None
    model: Optional[str] = None
    files: Optional[List[ChatFile]] = None


class AbortRequest(CamelModel):
    """Request schema for POST /agents/chat/abort."""
    conversation_id: str = Field(..., min_length=1)


# ==================== Conversation Schemas ====================

class MessageResponse(CamelModel):
    """A stored message."""
    message_id: str
    conversation_id: str
    parent_message_id: Optional[str] = None
    sender: Optional[str] = None
    text: str = ""
    content: List[Any] = []
    files: List[Dict[str, Any]] = []
    is_created_by_user: bool = False
    error: bool = False
    unfinished: bool = False
    endpoint: Optional[str] = None
    model: Optional[str] = None


class ConversationMessagesResponse(CamelModel):
    """Response schema for GET /conversations/{conversation_id}/messages."""
    conversation_id: str
    title: str
    messages: List[MessageResponse]


# ==================== Health Schemas ====================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    services: Dict[str, bool]
