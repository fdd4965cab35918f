"""Main orchestration loop for SalesDesk chat requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import (
    AsyncIterator,
    List,
    Mapping,
)

from salesdesk.agent.planner_interface import BasePlanner
from salesdesk.agent.tool_executor import run_tool_calls
from salesdesk.config import settings
from salesdesk.core.schema import (
    FinalText,
    Message,
    ToolCall,
)
from salesdesk.data.postgrest import DataStore
from salesdesk.tools import (
    TOOL_REGISTRY,
    ToolDefinition,
)

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    """States of one chat request."""

    AWAITING_MODEL = "awaiting_model"
    MODEL_RESPONDED = "model_responded"
    EXECUTING_TOOLS = "executing_tools"
    TERMINAL_ANSWER = "terminal_answer"
    BUDGET_EXHAUSTED = "budget_exhausted"


_TRANSITIONS = {
    LoopState.AWAITING_MODEL: {LoopState.MODEL_RESPONDED},
    LoopState.MODEL_RESPONDED: {
        LoopState.TERMINAL_ANSWER,
        LoopState.EXECUTING_TOOLS,
        LoopState.BUDGET_EXHAUSTED,
    },
    LoopState.EXECUTING_TOOLS: {LoopState.AWAITING_MODEL},
    # a streamed answer can end with tool calls the model asked for after its preamble
    LoopState.TERMINAL_ANSWER: {LoopState.EXECUTING_TOOLS},
    LoopState.BUDGET_EXHAUSTED: set(),
}


@dataclass
class StepBudget:
    """Planner invocations allowed for one request, and how many were spent."""

    total: int
    used: int = 0

    @property
    def remaining(self) -> int:
        return self.total - self.used

    def consume(self) -> None:
        self.used += 1


@dataclass
class ChatOutcome:
    """
    Result of :meth:`ChatOrchestrator.run`; *chunks* is the answer still to be streamed.

    *state* and *invocations* are final once *chunks* is exhausted.  They can still move while it
    streams, when the answer text is followed by tool calls.
    """

    state: LoopState
    chunks: AsyncIterator[str]
    budget: StepBudget
    conversation: List[Message]

    @property
    def invocations(self) -> int:
        return self.budget.used


async def _text(message: str) -> AsyncIterator[str]:
    yield message


async def _close(chunks: AsyncIterator[str]) -> None:
    aclose = getattr(chunks, "aclose", None)
    if aclose is not None:
        await aclose()


# ---------------------------------------------------------------------------
# Agent Loop
# ---------------------------------------------------------------------------
class ChatOrchestrator:
    """
    Drives planner <-> tools until the model answers or the step budget runs out.

    Every planner invocation consumes one step.  The last step is made with tool use disabled, so a
    request never makes more than *max_steps* invocations and still ends with the model's own words
    whenever it can produce them.
    """

    def __init__(
        self,
        planner: BasePlanner,
        store: DataStore,
        tools: Mapping[str, ToolDefinition] | None = None,
        max_steps: int | None = None,
        fallback_message: str | None = None,
    ):
        self.planner = planner
        self.store = store
        self.tools = TOOL_REGISTRY if tools is None else tools
        self.max_steps = settings.MAX_STEPS if max_steps is None else max_steps
        self.fallback_message = fallback_message or settings.BUDGET_FALLBACK_MESSAGE
        if self.max_steps < 1:
            raise ValueError("max_steps must be at least 1")

    @staticmethod
    def _transition(current: LoopState, target: LoopState) -> LoopState:
        if target not in _TRANSITIONS[current]:
            raise RuntimeError(f"Invalid loop transition {current.value} -> {target.value}")
        logger.debug("Loop state %s -> %s", current.value, target.value)
        return target

    async def run(self, system_prompt: str, conversation: List[Message]) -> ChatOutcome:
        """
        Run the loop over *conversation*, appending tool traffic to it in place.

        Planner failures propagate to the caller; tool failures are fed back to the model.
        """
        outcome = ChatOutcome(
            LoopState.AWAITING_MODEL, _text(""), StepBudget(self.max_steps), conversation
        )
        await self._advance(system_prompt, outcome)
        return outcome

    async def _advance(self, system_prompt: str, outcome: ChatOutcome) -> None:
        """Invoke the planner until it answers, then point ``outcome.chunks`` at that answer."""
        budget = outcome.budget
        conversation = outcome.conversation

        while True:
            last_step = budget.remaining == 1
            step = await self.planner.invoke(
                system_prompt, conversation, self.tools, allow_tools=not last_step
            )
            budget.consume()
            outcome.state = self._transition(outcome.state, LoopState.MODEL_RESPONDED)

            if isinstance(step, FinalText):
                exhausted = last_step and budget.used > 1
                outcome.state = self._transition(
                    outcome.state,
                    LoopState.BUDGET_EXHAUSTED if exhausted else LoopState.TERMINAL_ANSWER,
                )
                logger.info("Chat answered after %d model step(s)", budget.used)
                outcome.chunks = self._relay(system_prompt, step, outcome, last_step)
                return

            if last_step:
                logger.warning(
                    "Step budget of %d exhausted with %d tool call(s) still requested",
                    self.max_steps,
                    len(step.calls),
                )
                outcome.state = self._transition(outcome.state, LoopState.BUDGET_EXHAUSTED)
                outcome.chunks = _text(self.fallback_message)
                return

            outcome.state = self._transition(outcome.state, LoopState.EXECUTING_TOOLS)
            await self._execute_tools(step.calls, step.content, conversation)
            outcome.state = self._transition(outcome.state, LoopState.AWAITING_MODEL)

    async def _execute_tools(
        self, calls: List[ToolCall], content: str, conversation: List[Message]
    ) -> None:
        logger.info("Planner returned %d tool calls: %s", len(calls), [call.name for call in calls])
        conversation.append(Message(role="assistant", content=content, tool_calls=calls))
        results = await run_tool_calls(calls, self.store, self.tools)
        conversation.extend(Message.from_tool_result(result) for result in results)

    async def _relay(
        self,
        system_prompt: str,
        step: FinalText,
        outcome: ChatOutcome,
        last_step: bool,
    ) -> AsyncIterator[str]:
        """
        Stream *step*'s text; if the model asked for tools after it, run them and keep going.

        The continuation is streamed as part of the same answer, so the client sees the preamble
        followed by the answer built from the tool results.
        """
        parts: List[str] = []
        try:
            async for chunk in step.chunks:
                parts.append(chunk)
                yield chunk
        finally:
            await _close(step.chunks)

        if not step.trailing_calls:
            return
        if last_step:
            logger.warning(
                "Dropping %d tool call(s) requested after the final answer text",
                len(step.trailing_calls),
            )
            return

        outcome.state = self._transition(outcome.state, LoopState.EXECUTING_TOOLS)
        await self._execute_tools(step.trailing_calls, "".join(parts), outcome.conversation)
        outcome.state = self._transition(outcome.state, LoopState.AWAITING_MODEL)
        await self._advance(system_prompt, outcome)

        continuation = outcome.chunks
        try:
            async for chunk in continuation:
                yield chunk
        finally:
            await _close(continuation)
