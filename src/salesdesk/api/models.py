"""
Pydantic models for SalesDesk API requests.
This module defines the request schema used by the chat endpoint.
"""

from typing import (
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    Field,
)

from salesdesk.core.schema import Message


# ---------------------------------------------------------------------------
# Pydantic request schema
# ---------------------------------------------------------------------------
class TextPart(BaseModel):
    """One part of a multi-part message; only ``text`` parts carry content we use."""

    type: str = "text"
    text: str = ""


class ChatMessage(BaseModel):
    """
    One prior turn as sent by the chat page.

    *content* is either plain text or a list of parts (``[{"type": "text", "text": "..."}]``), the
    shape chat UIs send; text parts are joined in order.
    """

    role: Literal["system", "user", "assistant", "tool"]
    content: Union[str, List[TextPart]]

    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text for part in self.content if part.type == "text")

    def to_message(self) -> Message:
        return Message(role=self.role, content=self.text())


class ChatRequest(BaseModel):
    """Incoming chat request."""

    messages: List[ChatMessage] = Field(..., min_length=1, description="Conversation so far, oldest first")
    system: Optional[str] = Field(None, description="Replaces the assembled system prompt")
    model: Optional[str] = Field(None, description="Model identifier (default from settings)")

    def conversation(self) -> List[Message]:
        """
        Return a fresh, request-owned conversation log.

        ``tool`` turns are accepted but left out: without the assistant call they answered, the
        provider cannot replay them.
        """
        return [m.to_message() for m in self.messages if m.role != "tool"]
