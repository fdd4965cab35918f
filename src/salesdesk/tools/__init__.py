"""
Tool registry for SalesDesk.

This module provides a decorator to register tools and a registry to look them up by name.
A tool is an async, read-only function over the data store whose arguments are described by a
Pydantic model; the model doubles as the argument schema advertised to the LLM.
"""

import logging
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Mapping,
    Type,
    TypedDict,
)

from pydantic import BaseModel

from salesdesk.data.postgrest import DataStore

logger = logging.getLogger(__name__)

ToolHandler = Callable[[DataStore, Any], Awaitable[Any]]


@dataclass(frozen=True)
class ToolDefinition:
    """A named, schema-typed, read-only function exposed to the model."""

    name: str
    description: str
    args_model: Type[BaseModel]
    handler: ToolHandler

    def validate(self, raw_args: Any) -> BaseModel:
        """Validate raw model-emitted arguments (raises ``pydantic.ValidationError``)."""
        if raw_args is None:
            raw_args = {}
        return self.args_model.model_validate(raw_args)


TOOL_REGISTRY: Dict[str, ToolDefinition] = {}
"""Global catalogue of tools, filled at import time."""


def register_tool(name: str, description: str, args_model: Type[BaseModel]) -> Callable:
    """
    Register an async tool handler under *name*.

    The function is registered as a decorator, so it can be used like this:
        @register_tool("get_thing", "Fetch a thing by id.", GetThingArgs)
        async def get_thing(store, args):
            return await ...

    Parameters
    ----------
    name: str
        The name advertised to the model.  Must be unique.
    description: str
        Human-readable description the model uses to decide when to call the tool.
    args_model: Type[BaseModel]
        Pydantic model validating the arguments.
    Returns
    -------
    Callable
        A decorator that registers the function with the given name.
    Raises
    ------
    ValueError
        If a tool with the same name is already registered.
    """
    if name in TOOL_REGISTRY:
        raise ValueError(f"Tool '{name}' is already registered.")
    logger.debug("Registering tool '%s'", name)

    def wrapper(fn: ToolHandler) -> ToolHandler:
        TOOL_REGISTRY[name] = ToolDefinition(
            name=name, description=description, args_model=args_model, handler=fn
        )
        return fn

    return wrapper


class ToolSchema(TypedDict):
    """
    Schema for a tool function
    """

    description: str
    parameters: Mapping[str, Any]


def get_tool_schemas(tools: Mapping[str, ToolDefinition] | None = None) -> Mapping[str, ToolSchema]:
    """Describe *tools* (default: the global registry) as name -> {description, JSON schema}."""
    if tools is None:
        tools = TOOL_REGISTRY
    return {
        name: {"description": tool.description, "parameters": tool.args_model.model_json_schema()}
        for name, tool in tools.items()
    }


# Import the catalogue so its tools register themselves.
from salesdesk.tools import sales  # noqa: E402,F401  pylint: disable=wrong-import-position
