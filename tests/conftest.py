"""Shared fixtures: an in-memory store and scripted planners."""

import copy
import inspect
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
)

import pytest

from salesdesk.agent.planner_interface import (
    BasePlanner,
    PlannerStep,
)
from salesdesk.core.schema import (
    FinalText,
    Message,
    ToolCall,
    ToolCallRequests,
)
from salesdesk.data.postgrest import StoreError
from salesdesk.tools import ToolDefinition


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------
class FakeStore:
    """Answers ``select`` from in-memory tables, understanding ``eq.`` and ``ilike.*x*`` filters."""

    def __init__(self, tables: Dict[str, List[Dict[str, Any]]] | None = None):
        self.tables = tables or {}
        self.failing: set[str] = set()
        self.queries: List[Dict[str, Any]] = []

    @staticmethod
    def _matches(row: Dict[str, Any], column: str, expr: str) -> bool:
        op, _, value = expr.partition(".")
        cell = row.get(column)
        if op == "eq":
            return str(cell) == value
        if op == "ilike":
            return cell is not None and value.strip("*").lower() in str(cell).lower()
        raise ValueError(f"unsupported filter {expr}")

    async def select(
        self,
        table: str,
        columns: str,
        *,
        filters: Optional[Mapping[str, str]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        self.queries.append(
            {"table": table, "columns": columns, "filters": dict(filters or {}), "limit": limit}
        )
        if table in self.failing:
            raise StoreError(f"Query on '{table}' failed with status 503")
        rows = [
            row
            for row in self.tables.get(table, [])
            if all(self._matches(row, col, expr) for col, expr in (filters or {}).items())
        ]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda r: r[column], reverse=direction == "desc")
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)


@pytest.fixture
def store() -> FakeStore:
    """A store seeded with a few products, one order, one customer and the company profile."""
    return FakeStore(
        {
            "Product": [
                {"id": 1, "name": "iPhone 15 Pro", "price": "999.99", "stock": 25, "categoryId": 1},
                {"id": 2, "name": "Phone Case", "price": "19.50", "stock": None, "categoryId": 1},
                {"id": 3, "name": "Smartphone Stand", "price": "12", "stock": 4, "categoryId": 3},
                {"id": 4, "name": "MacBook Air M3", "price": 1299.99, "stock": 15, "categoryId": 1},
            ],
            "Order": [
                {
                    "id": 7,
                    "orderNumber": 1001,
                    "personId": 3,
                    "employedId": None,
                    "totalAmount": "1049.49",
                    "status": "PENDING",
                }
            ],
            "OrderItems": [
                {
                    "id": 1,
                    "orderId": 7,
                    "productId": 1,
                    "quantity": 1,
                    "product": {"id": 1, "name": "iPhone 15 Pro", "price": "999.99"},
                },
                {
                    "id": 2,
                    "orderId": 7,
                    "productId": 2,
                    "quantity": 2,
                    "product": {"id": 2, "name": "Phone Case", "price": "19.50"},
                },
            ],
            "Person": [
                {
                    "id": 3,
                    "firstName": "Ana",
                    "lastName": "Pérez",
                    "email": "ana@example.com",
                    "phoneNumber": "555-0101",
                }
            ],
            "CompanySettings": [
                {
                    "id": 1,
                    "name": "Acme Ventas",
                    "description": "Electronics retailer",
                    "personality": "Friendly and direct",
                    "salesMessaging": "Free shipping over $100",
                }
            ],
        }
    )


# ---------------------------------------------------------------------------
# Scripted planners
# ---------------------------------------------------------------------------
async def _chunks(parts: Sequence[str]):
    for part in parts:
        yield part


def answer(*parts: str) -> Callable[[], PlannerStep]:
    """Script entry: the model answers with *parts* as stream chunks."""
    return lambda: FinalText(chunks=_chunks(parts))


def answer_then_calls(text: str, *calls: ToolCall) -> Callable[[], PlannerStep]:
    """Script entry: the model streams *text*, then asks for *calls* once the text is done."""

    def step() -> PlannerStep:
        final = FinalText(chunks=_chunks([]))

        async def chunks():
            yield text
            final.trailing_calls.extend(c.model_copy() for c in calls)

        final.chunks = chunks()
        return final

    return step


def tool_calls(*calls: ToolCall) -> Callable[[], PlannerStep]:
    """Script entry: the model requests *calls*."""
    return lambda: ToolCallRequests(calls=[c.model_copy() for c in calls])


class ScriptedPlanner(BasePlanner):
    """
    Plays back a list of steps.

    Each entry is a zero-argument factory, or a callable taking the conversation (for steps that
    depend on tool results).  The last entry repeats once the script runs out.
    """

    def __init__(self, script: Sequence[Callable[..., PlannerStep]], model: str | None = None):
        super().__init__(model=model)
        self.script = list(script)
        self.invocations: List[Dict[str, Any]] = []

    async def invoke(
        self,
        system_prompt: str,
        conversation: Sequence[Message],
        tools: Mapping[str, ToolDefinition],
        *,
        allow_tools: bool = True,
    ) -> PlannerStep:
        self.invocations.append(
            {
                "system_prompt": system_prompt,
                "conversation_length": len(conversation),
                "allow_tools": allow_tools,
            }
        )
        entry = self.script[min(len(self.invocations), len(self.script)) - 1]
        if inspect.signature(entry).parameters:
            return entry(conversation)
        return entry()


class ToolHungryPlanner(ScriptedPlanner):
    """Requests a tool on every step, and answers only when tools are disabled (if *obeys*)."""

    def __init__(self, call: ToolCall, obeys: bool = False):
        super().__init__([tool_calls(call)])
        self.obeys = obeys

    async def invoke(self, system_prompt, conversation, tools, *, allow_tools=True):
        step = await super().invoke(system_prompt, conversation, tools, allow_tools=allow_tools)
        if not allow_tools and self.obeys:
            return FinalText(chunks=_chunks(["Partial answer."]))
        return step


class FailingPlanner(BasePlanner):
    """Simulates a provider outage."""

    def __init__(self, exc: Exception):
        super().__init__()
        self.exc = exc
        self.calls = 0

    async def invoke(self, system_prompt, conversation, tools, *, allow_tools=True):
        self.calls += 1
        raise self.exc


async def collect(chunks) -> str:
    """Drain an async chunk iterator into one string."""
    return "".join([chunk async for chunk in chunks])
