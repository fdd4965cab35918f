"""
Planner interface for SalesDesk.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, tools,
data access) stays model-agnostic and talks to a planner through one call:

    step = await planner.invoke(system_prompt, conversation, tools)

which returns either :class:`FinalText` (the answer, as a stream of text chunks) or
:class:`ToolCallRequests` (the tools the model wants to run first).

Out of the box we ship an OpenAI chat-completions planner, which also works with any
OpenAI-compatible endpoint through ``OPENAI_BASE_URL``.  Additional providers can be added by
subclassing :class:`BasePlanner` and registering via :func:`register_planner`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Mapping,
    Sequence,
    Type,
    Union,
)

import openai

from salesdesk.config import settings
from salesdesk.core.schema import (
    FinalText,
    Message,
    ToolCall,
    ToolCallRequests,
    new_call_id,
)
from salesdesk.tools import (
    ToolDefinition,
    ToolSchema,
    get_tool_schemas,
)

logger = logging.getLogger(__name__)

PlannerStep = Union[FinalText, ToolCallRequests]


class PlannerError(RuntimeError):
    """Raised when the model provider cannot be reached or fails."""


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PLANNER_REGISTRY: dict[str, Type["BasePlanner"]] = {}


def register_planner(name: str) -> Callable:
    """Decorator to register a planner class under *name*."""

    def wrapper(cls: Type["BasePlanner"]) -> Type["BasePlanner"]:
        _PLANNER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_planner(name: str | None = None, model: str | None = None, **options: Any) -> "BasePlanner":
    """
    Factory that returns an instantiated planner.

    Fallback order:
    1. *name* arg
    2. ``settings.PLANNER`` env option
    3. default: ``"openai"``

    Extra *options* (e.g. a shared ``client``) are passed to the planner's constructor.
    """

    target = name or getattr(settings, "PLANNER", "openai")
    cls = _PLANNER_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Planner '{target}' is not registered.")
    return cls(model=model, **options)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BasePlanner(ABC):
    """Abstract planner that turns a conversation into tool calls or a streamed answer."""

    def __init__(self, model: str | None = None):
        self.model = model

    @abstractmethod
    async def invoke(
        self,
        system_prompt: str,
        conversation: Sequence[Message],
        tools: Mapping[str, ToolDefinition],
        *,
        allow_tools: bool = True,
    ) -> PlannerStep:
        """
        Run one model step.

        When *allow_tools* is False the tools are still described (the conversation may reference
        earlier calls) but the model must answer in text.
        """


# ---------------------------------------------------------------------------
# OpenAI wire format
# ---------------------------------------------------------------------------
def to_openai_messages(system_prompt: str, conversation: Sequence[Message]) -> List[Dict[str, Any]]:
    """Render the system prompt + conversation as chat-completions messages."""
    messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for msg in conversation:
        if msg.role == "tool":
            messages.append(
                {"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content}
            )
        elif msg.role == "assistant" and msg.tool_calls:
            messages.append(
                {
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.name,
                                "arguments": (
                                    call.args
                                    if isinstance(call.args, str)
                                    else json.dumps(call.args, ensure_ascii=False)
                                ),
                            },
                        }
                        for call in msg.tool_calls
                    ],
                }
            )
        else:
            messages.append({"role": msg.role, "content": msg.content})
    return messages


def to_openai_tools(schemas: Mapping[str, ToolSchema]) -> List[Dict[str, Any]]:
    """Render tool schemas in the chat-completions ``tools`` format."""
    return [
        {
            "type": "function",
            "function": {
                "name": name,
                "description": schema["description"],
                "parameters": schema["parameters"],
            },
        }
        for name, schema in schemas.items()
    ]


def _parse_arguments(raw: str) -> Any:
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Model emitted non-JSON tool arguments: %s", raw)
        return raw  # left for the tool's validation to reject


def _delta_of(chunk: Any) -> Any:
    if not getattr(chunk, "choices", None):
        return None
    return chunk.choices[0].delta


def _merge_tool_deltas(pending: Dict[int, Dict[str, str]], delta: Any) -> None:
    for tc in delta.tool_calls or []:
        slot = pending.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
        if tc.id:
            slot["id"] = tc.id
        if tc.function is not None:
            slot["name"] += tc.function.name or ""
            slot["arguments"] += tc.function.arguments or ""


def _build_calls(pending: Dict[int, Dict[str, str]]) -> List[ToolCall]:
    return [
        ToolCall(
            id=slot["id"] or new_call_id(),
            name=slot["name"],
            args=_parse_arguments(slot["arguments"]),
        )
        for _, slot in sorted(pending.items())
    ]


async def _forward_text(
    first: str,
    iterator: AsyncIterator[Any],
    stream: Any,
    step: FinalText,
) -> AsyncIterator[str]:
    """
    Yield *first*, then the content of the remaining chunks.

    Tool-call deltas that show up after the text started are still merged; once the stream is
    exhausted they are attached to *step* as ``trailing_calls``.
    """
    pending: Dict[int, Dict[str, str]] = {}
    try:
        yield first
        async for chunk in iterator:
            delta = _delta_of(chunk)
            if delta is None:
                continue
            _merge_tool_deltas(pending, delta)
            if delta.content:
                yield delta.content
        if pending:
            step.trailing_calls.extend(_build_calls(pending))
    finally:
        await stream.close()


async def _no_text() -> AsyncIterator[str]:
    return
    yield  # pylint: disable=unreachable


async def read_openai_step(stream: Any) -> PlannerStep:
    """
    Consume a streamed chat completion just far enough to classify it.

    Tool-call deltas are merged by index until the stream ends.  The first content delta seen while
    no tool call is pending means the model is answering: the remaining stream is handed over lazily
    as :class:`FinalText` so the answer can be forwarded as it is generated.  Calls requested after
    that point land in ``FinalText.trailing_calls`` for the loop to run.
    """
    iterator = stream.__aiter__()
    pending: Dict[int, Dict[str, str]] = {}
    preamble: List[str] = []

    async for chunk in iterator:
        delta = _delta_of(chunk)
        if delta is None:
            continue
        _merge_tool_deltas(pending, delta)
        if delta.content:
            if not pending:
                step = FinalText(chunks=_no_text())
                step.chunks = _forward_text(delta.content, iterator, stream, step)
                return step
            preamble.append(delta.content)

    await stream.close()
    if not pending:
        return FinalText(chunks=_no_text())
    return ToolCallRequests(calls=_build_calls(pending), content="".join(preamble))


# ---------------------------------------------------------------------------
# Concrete planners
# ---------------------------------------------------------------------------
def create_openai_client() -> openai.AsyncOpenAI:
    """Build an ``AsyncOpenAI`` client from settings; the API keeps one per process."""
    return openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL)


@register_planner("openai")
class OpenAIPlanner(BasePlanner):
    """OpenAI chat-completions planner with native tool calling and streaming."""

    def __init__(self, model: str | None = None, client: Any = None):
        super().__init__(model=model or getattr(settings, "OPENAI_MODEL", "gpt-4o-mini"))
        self._client = client or create_openai_client()

    async def invoke(
        self,
        system_prompt: str,
        conversation: Sequence[Message],
        tools: Mapping[str, ToolDefinition],
        *,
        allow_tools: bool = True,
    ) -> PlannerStep:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(system_prompt, conversation),
            "temperature": 0.2,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = to_openai_tools(get_tool_schemas(tools))
            kwargs["tool_choice"] = "auto" if allow_tools else "none"

        try:
            stream = await self._client.chat.completions.create(**kwargs)
            return await read_openai_step(stream)
        except openai.OpenAIError as e:
            logger.error("OpenAI planner error: %s", str(e))
            raise PlannerError(f"Error calling OpenAI: {str(e)}") from e
