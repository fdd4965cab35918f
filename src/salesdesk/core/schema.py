"""
Schema definitions for planner <-> agent <-> tool messages.

These data models serve as the contract between the planner LLM, the orchestration loop, and
individual tools.  We keep them separate from runtime logic so they can be imported anywhere without
side-effects.
"""

import json
import uuid
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    AsyncIterator,
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

Role = Literal["system", "user", "assistant", "tool"]


def new_call_id() -> str:
    """Return an id for a tool call the provider did not label."""
    return f"call_{uuid.uuid4().hex[:24]}"


class ToolCall(BaseModel):
    """A call that the planner wants the agent to execute."""

    id: str = Field(default_factory=new_call_id, description="Provider-assigned call id")
    name: str = Field(..., description="Registered tool name")
    args: Any = Field(
        default_factory=dict,
        description="Arguments exactly as emitted by the model (validated later by the tool)",
    )


class ToolResult(BaseModel):
    """Outcome of one tool call, fed back to the planner as a ``tool`` message."""

    call_id: str
    name: str
    success: bool
    payload: Any = None
    error: Optional[str] = None

    def to_content(self) -> str:
        """Serialize the result the way the model sees it."""
        if self.success:
            return json.dumps(self.payload, ensure_ascii=False, default=str)
        return json.dumps({"success": False, "error": self.error}, ensure_ascii=False)


class Message(BaseModel):
    """One entry of the conversation log."""

    role: Role
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None  # assistant only
    tool_call_id: Optional[str] = None  # tool only
    name: Optional[str] = None  # tool only

    @classmethod
    def from_tool_result(cls, result: ToolResult) -> "Message":
        """Wrap a tool result so it can be appended to the conversation."""
        return cls(
            role="tool",
            content=result.to_content(),
            tool_call_id=result.call_id,
            name=result.name,
        )


class BusinessProfile(BaseModel):
    """The single configurable record describing the operating company."""

    id: Optional[int] = None
    name: str = ""
    description: str = ""
    personality: str = ""
    sales_messaging: str = ""


# ---------------------------------------------------------------------------
# Planner step outcomes
# ---------------------------------------------------------------------------
@dataclass
class FinalText:
    """
    The model answered; *chunks* yields the answer as it is produced.

    Some models write a short preamble and only then ask for tools.  Such calls are collected into
    *trailing_calls* while *chunks* is consumed, so they are complete once the stream is exhausted.
    """

    chunks: AsyncIterator[str]
    trailing_calls: List[ToolCall] = field(default_factory=list)


@dataclass
class ToolCallRequests:
    """The model asked for one or more tool calls before answering."""

    calls: List[ToolCall] = field(default_factory=list)
    content: str = ""  # optional text the model emitted alongside the calls
