"""Tests for the chat orchestration loop."""

import asyncio
import json

import pytest
from conftest import (
    FailingPlanner,
    ScriptedPlanner,
    ToolHungryPlanner,
    answer,
    answer_then_calls,
    collect,
    tool_calls,
)
from pydantic import BaseModel

from salesdesk.agent.agent_loop import (
    ChatOrchestrator,
    LoopState,
)
from salesdesk.agent.planner_interface import PlannerError
from salesdesk.core.schema import (
    FinalText,
    Message,
    ToolCall,
)
from salesdesk.tools import ToolDefinition

SYSTEM = "You are a test assistant."


def _user(text: str) -> list[Message]:
    return [Message(role="user", content=text)]


async def test_direct_answer_uses_one_step(store) -> None:
    planner = ScriptedPlanner([answer("Hola", " mundo")])

    outcome = await ChatOrchestrator(planner, store).run(SYSTEM, _user("hola"))

    assert outcome.state is LoopState.TERMINAL_ANSWER
    assert outcome.invocations == 1
    assert await collect(outcome.chunks) == "Hola mundo"
    assert planner.invocations[0]["system_prompt"] == SYSTEM
    assert planner.invocations[0]["allow_tools"] is True


async def test_tool_call_then_answer(store) -> None:
    planner = ScriptedPlanner(
        [
            tool_calls(ToolCall(id="c1", name="get_product_stock", args={"product_id": 1})),
            answer("Quedan 25 unidades."),
        ]
    )
    conversation = _user("¿Cuánto stock hay del producto 1?")
    first = conversation[0]

    outcome = await ChatOrchestrator(planner, store).run(SYSTEM, conversation)

    assert outcome.state is LoopState.TERMINAL_ANSWER
    assert outcome.invocations == 2
    assert await collect(outcome.chunks) == "Quedan 25 unidades."
    assert conversation[0] is first
    assert [m.role for m in conversation] == ["user", "assistant", "tool"]
    assert conversation[1].tool_calls[0].id == "c1"
    assert conversation[2].tool_call_id == "c1"
    assert json.loads(conversation[2].content)["stock"] == 25
    assert [i["conversation_length"] for i in planner.invocations] == [1, 3]


async def test_tool_calls_after_preamble_are_executed(store) -> None:
    planner = ScriptedPlanner(
        [
            answer_then_calls(
                "Déjame revisar. ",
                ToolCall(id="late", name="get_order_by_number", args={"order_number": 1001}),
            ),
            answer("El pedido 1001 suma 1174.06."),
        ]
    )

    outcome = await ChatOrchestrator(planner, store).run(SYSTEM, _user("¿Pedido 1001?"))

    assert await collect(outcome.chunks) == "Déjame revisar. El pedido 1001 suma 1174.06."
    assert outcome.invocations == 2
    assert outcome.state is LoopState.TERMINAL_ANSWER
    assert [m.role for m in outcome.conversation] == ["user", "assistant", "tool"]
    assert outcome.conversation[1].content == "Déjame revisar. "
    assert outcome.conversation[2].tool_call_id == "late"
    assert json.loads(outcome.conversation[2].content)["order"]["total"] == 1174.06


async def test_tool_calls_after_final_step_text_are_dropped(store) -> None:
    planner = ScriptedPlanner(
        [answer_then_calls("Solo esto.", ToolCall(name="get_product_stock", args={"product_id": 1}))]
    )

    outcome = await ChatOrchestrator(planner, store, max_steps=1).run(SYSTEM, _user("hi"))

    assert await collect(outcome.chunks) == "Solo esto."
    assert outcome.invocations == 1
    assert [m.role for m in outcome.conversation] == ["user"]


async def test_model_recovers_from_invalid_arguments(store) -> None:
    planner = ScriptedPlanner(
        [
            tool_calls(ToolCall(id="bad", name="get_product_stock", args={"product_id": "abc"})),
            tool_calls(ToolCall(id="good", name="get_product_stock", args={"product_id": 1})),
            answer("Quedan 25 unidades."),
        ]
    )

    outcome = await ChatOrchestrator(planner, store).run(SYSTEM, _user("¿Stock del producto uno?"))

    tool_msgs = [m for m in outcome.conversation if m.role == "tool"]
    failed = json.loads(tool_msgs[0].content)
    assert tool_msgs[0].tool_call_id == "bad"
    assert failed["success"] is False
    assert failed["error"].startswith("Invalid arguments for tool 'get_product_stock'")
    assert json.loads(tool_msgs[1].content)["stock"] == 25
    assert outcome.invocations == 3
    assert await collect(outcome.chunks) == "Quedan 25 unidades."


async def test_budget_bounds_invocations_and_falls_back(store) -> None:
    planner = ToolHungryPlanner(ToolCall(name="get_product_stock", args={"product_id": 1}))

    outcome = await ChatOrchestrator(planner, store, fallback_message="Sin respuesta.").run(
        SYSTEM, _user("loop forever")
    )

    assert outcome.invocations == 5
    assert len(planner.invocations) == 5
    assert [i["allow_tools"] for i in planner.invocations] == [True] * 4 + [False]
    assert outcome.state is LoopState.BUDGET_EXHAUSTED
    assert await collect(outcome.chunks) == "Sin respuesta."
    assert sum(1 for m in outcome.conversation if m.role == "tool") == 4


async def test_budget_exhaustion_surfaces_model_answer(store) -> None:
    planner = ToolHungryPlanner(ToolCall(name="get_product_stock", args={"product_id": 1}), obeys=True)

    outcome = await ChatOrchestrator(planner, store, max_steps=3).run(SYSTEM, _user("loop"))

    assert outcome.invocations == 3
    assert outcome.state is LoopState.BUDGET_EXHAUSTED
    assert await collect(outcome.chunks) == "Partial answer."


async def test_single_step_budget_answers_without_tools(store) -> None:
    planner = ScriptedPlanner([answer("ok")])

    outcome = await ChatOrchestrator(planner, store, max_steps=1).run(SYSTEM, _user("hi"))

    assert outcome.state is LoopState.TERMINAL_ANSWER
    assert planner.invocations[0]["allow_tools"] is False


async def test_unknown_tool_does_not_abort(store) -> None:
    planner = ScriptedPlanner(
        [tool_calls(ToolCall(id="x", name="delete_everything", args={})), answer("No puedo.")]
    )

    outcome = await ChatOrchestrator(planner, store).run(SYSTEM, _user("borra todo"))

    tool_msg = outcome.conversation[-1]
    assert tool_msg.role == "tool"
    assert json.loads(tool_msg.content) == {
        "success": False,
        "error": "Tool 'delete_everything' not found.",
    }
    assert await collect(outcome.chunks) == "No puedo."


async def test_results_appended_in_request_order(store) -> None:
    class Args(BaseModel):
        label: str
        delay: float = 0.0

    async def delayed(_store, args: Args) -> str:
        await asyncio.sleep(args.delay)
        return args.label

    tools = {"delayed": ToolDefinition("delayed", "Echo after a delay.", Args, delayed)}
    planner = ScriptedPlanner(
        [
            tool_calls(
                ToolCall(id="a", name="delayed", args={"label": "A", "delay": 0.05}),
                ToolCall(id="b", name="delayed", args={"label": "B"}),
            ),
            answer("done"),
        ]
    )

    outcome = await ChatOrchestrator(planner, store, tools=tools).run(SYSTEM, _user("go"))

    tool_msgs = [m for m in outcome.conversation if m.role == "tool"]
    assert [m.tool_call_id for m in tool_msgs] == ["a", "b"]
    assert [json.loads(m.content) for m in tool_msgs] == ["A", "B"]


async def test_missing_order_answer_comes_from_tool_result(store) -> None:
    def reply(conversation):
        result = json.loads(conversation[-1].content)
        assert result == {"found": False}
        return FinalText(chunks=_one("No encontré el pedido 1024."))

    async def _one(text):
        yield text

    planner = ScriptedPlanner(
        [tool_calls(ToolCall(name="get_order_by_number", args={"order_number": 1024})), reply]
    )

    outcome = await ChatOrchestrator(planner, store).run(SYSTEM, _user("¿Pedido 1024?"))

    text = await collect(outcome.chunks)
    assert "1024" in text
    assert "total" not in text.lower()


async def test_planner_error_propagates(store) -> None:
    planner = FailingPlanner(PlannerError("provider down"))

    with pytest.raises(PlannerError):
        await ChatOrchestrator(planner, store).run(SYSTEM, _user("hola"))
    assert planner.calls == 1


def test_rejects_empty_budget(store) -> None:
    with pytest.raises(ValueError):
        ChatOrchestrator(ScriptedPlanner([answer("x")]), store, max_steps=0)
