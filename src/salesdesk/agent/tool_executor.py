"""Dispatches tool calls registered in ``salesdesk.tools`` and wraps errors."""

import asyncio
import logging
from typing import (
    Any,
    List,
    Mapping,
    Sequence,
)

from pydantic import ValidationError

from salesdesk.core.schema import (
    ToolCall,
    ToolResult,
)
from salesdesk.data.postgrest import DataStore
from salesdesk.tools import (
    TOOL_REGISTRY,
    ToolDefinition,
)

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


class ToolNotFoundError(ToolExecutionError):
    """Raised when the model asks for a tool that is not in the catalogue."""


class ToolValidationError(ToolExecutionError):
    """Raised when the model's arguments do not match the tool's schema."""


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


async def execute_tool(
    name: str,
    args: Any,
    store: DataStore,
    tools: Mapping[str, ToolDefinition] | None = None,
) -> Any:
    """
    Look up *name* in the registry, validate *args* and run the tool.

    Parameters
    ----------
    name:
        The registered tool name.
    args:
        Raw arguments emitted by the model.  *None* is treated as an empty dict.
    store:
        Data store the tool reads from.
    tools:
        Catalogue to resolve *name* in (default: the global registry).

    Returns
    -------
    Any
        Whatever the tool returns.

    Raises
    ------
    ToolNotFoundError
        If the tool is not registered.
    ToolValidationError
        If the arguments fail validation.
    ToolExecutionError
        If the tool itself raises.
    """
    if tools is None:
        tools = TOOL_REGISTRY

    tool = tools.get(name)
    if tool is None:
        raise ToolNotFoundError(f"Tool '{name}' not found.")

    try:
        validated = tool.validate(args)
    except ValidationError as exc:
        logger.info("Rejected arguments for tool '%s': %s", name, args)
        raise ToolValidationError(
            f"Invalid arguments for tool '{name}': {_describe_validation_error(exc)}"
        ) from exc

    try:
        logger.debug("Executing tool '%s' with args=%s", name, args)
        return await tool.handler(store, validated)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", name)
        # The underlying message stays in the logs; the model only learns that the read failed.
        raise ToolExecutionError(f"Tool '{name}' failed to read the data.") from exc


async def run_tool_call(
    call: ToolCall,
    store: DataStore,
    tools: Mapping[str, ToolDefinition] | None = None,
) -> ToolResult:
    """Execute one call and capture any failure as an unsuccessful :class:`ToolResult`."""
    try:
        payload = await execute_tool(call.name, call.args, store, tools)
    except ToolExecutionError as exc:
        logger.warning("Tool failure: %s", exc)
        return ToolResult(call_id=call.id, name=call.name, success=False, error=str(exc))
    logger.info("Tool '%s' returned: %s", call.name, payload)
    return ToolResult(call_id=call.id, name=call.name, success=True, payload=payload)


async def run_tool_calls(
    calls: Sequence[ToolCall],
    store: DataStore,
    tools: Mapping[str, ToolDefinition] | None = None,
) -> List[ToolResult]:
    """
    Execute all *calls* of one step concurrently.

    Results come back in the order the calls were requested, whatever order they finish in.
    """
    return list(await asyncio.gather(*(run_tool_call(call, store, tools) for call in calls)))
