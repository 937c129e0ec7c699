"""The bounded observe / think / act loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from typing import Any

from deskpilot.agent.context import build_context, default_system_prompt, prune_screenshots
from deskpilot.agent.detector import DetectionResult, ElementDetector, format_elements
from deskpilot.agent.executor import ToolExecutor
from deskpilot.agent.results import AgentResult, AgentResultKind
from deskpilot.channel.interface import ComputerInterface
from deskpilot.config.schema import AgentConfig
from deskpilot.errors import IterationBudgetExceeded
from deskpilot.events import EventSink, default_sink
from deskpilot.llm.adapter import StreamAdapter
from deskpilot.llm.messages import (
    AgentMessage,
    ErrorEvent,
    FinalMessageEvent,
    ImageContent,
    ReasoningEvent,
    ToolCall,
    ToolCallEvent,
)
from deskpilot.llm.tools import TOOL_SCHEMAS


class AgentOrchestrator:
    """Runs a vision model against a remote computer until the goal is met.

    Each iteration captures the screen, asks the model what to do, and
    executes the requested tool calls one at a time. The conversation
    history belongs to the orchestrator; callers may read it through
    ``history`` but only ``run`` appends to it.

    An orchestrator runs once. Build a new one to start over.

    Example:
        orchestrator = AgentOrchestrator(adapter, computer)
        async for result in orchestrator.run([AgentMessage.user("Open Notepad")]):
            print(result.kind, result.content)
    """

    def __init__(
        self,
        adapter: StreamAdapter,
        computer: ComputerInterface,
        config: AgentConfig | None = None,
        *,
        executor: ToolExecutor | None = None,
        detector: ElementDetector | None = None,
        tools: Sequence[dict[str, Any]] | None = None,
        cancel: asyncio.Event | None = None,
        events: EventSink | None = None,
    ) -> None:
        self.adapter = adapter
        self.computer = computer
        self.config = config or AgentConfig()
        self.detector = detector
        self.tools = list(TOOL_SCHEMAS if tools is None else tools)
        self.cancel = cancel or asyncio.Event()
        self._events = events or default_sink("agent")
        self.executor = executor or ToolExecutor(computer, events=self._events)
        self._history: list[AgentMessage] = []
        self._started = False

    @property
    def history(self) -> list[AgentMessage]:
        return self._history

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()

    async def run(self, initial_messages: Sequence[AgentMessage]) -> AsyncIterator[AgentResult]:
        """Run the loop, yielding progress as it happens.

        Raises:
            RuntimeError: The orchestrator already ran
            DeskPilotError: Screenshot capture or the model transport failed
        """
        if self._started:
            raise RuntimeError("AgentOrchestrator.run may only be called once")
        self._started = True
        self._history.extend(initial_messages)

        max_iterations = self.config.max_iterations
        self._events.emit("agent.started", model=self.adapter.model, messages=len(self._history))

        for iteration in range(1, max_iterations + 1):
            if self.cancelled:
                self._events.emit("agent.cancelled", iteration=iteration)
                return
            self._events.emit("agent.iteration", level=logging.DEBUG, iteration=iteration)

            screenshot, size = await self._observe()
            if self.cancelled:
                self._events.emit("agent.cancelled", iteration=iteration)
                return
            yield screenshot

            pruned = prune_screenshots(self._history, self.config.recent_screenshots)
            if pruned:
                self._events.emit("agent.pruned", level=logging.DEBUG, turns=pruned)
            system_prompt = self.config.system_prompt or default_system_prompt(*size)
            context = build_context(self._history, system_prompt)

            final: FinalMessageEvent | None = None
            calls: list[ToolCall] = []
            async with aclosing(self.adapter.stream(context, self.tools)) as stream:
                async for event in stream:
                    if isinstance(event, ReasoningEvent):
                        yield AgentResult.reasoning(event.text)
                    elif isinstance(event, ToolCallEvent):
                        calls.append(event.tool_call)
                    elif isinstance(event, FinalMessageEvent):
                        final = event
                    elif isinstance(event, ErrorEvent):
                        self._events.emit("agent.model_error", level=logging.ERROR, message=event.message)
                        yield AgentResult.error(event.message)
                        return
                    if self.cancelled:
                        self._events.emit("agent.cancelled", iteration=iteration)
                        return

            if final is None:
                message = "Model stream ended without a final message"
                self._events.emit("agent.model_error", level=logging.ERROR, message=message)
                yield AgentResult.error(message)
                return

            self._history.append(
                AgentMessage.assistant(final.text or None, calls, continuation=final.continuation)
            )
            if final.text:
                yield AgentResult.message(final.text)

            for index, call in enumerate(calls):
                if self.cancelled:
                    self._events.emit("agent.cancelled", iteration=iteration)
                    return
                if index and self.config.action_delay > 0:
                    await asyncio.sleep(self.config.action_delay)
                yield AgentResult.for_tool_call(call)
                self._history.append(await self._execute(call))
                if self.config.screenshot_after_action:
                    yield await self._after_action_screenshot()

            if not calls and not final.should_continue:
                self._events.emit("agent.completed", iterations=iteration)
                return

        error = IterationBudgetExceeded(max_iterations)
        self._events.emit("agent.max_iterations", level=logging.WARNING, max_iterations=max_iterations)
        yield AgentResult.error(str(error))

    async def _observe(self) -> tuple[AgentResult, tuple[int, int]]:
        image = await self.computer.screen.screenshot()
        size = await self.computer.screen.get_size()

        detection = await self._detect(image, size.width, size.height)
        elements = detection.elements if detection else []
        annotated = detection.annotated_image if detection else None

        self._history.append(
            AgentMessage.user(
                format_elements(elements) or None,
                [ImageContent(annotated or image)],
            )
        )
        result = AgentResult(
            AgentResultKind.SCREENSHOT,
            screenshot=image,
            annotated_screenshot=annotated,
            elements=tuple(elements),
        )
        return result, (size.width, size.height)

    async def _after_action_screenshot(self) -> AgentResult:
        """Show the effect of an action. Reported only, not added to history."""
        if self.config.screenshot_delay > 0:
            await asyncio.sleep(self.config.screenshot_delay)
        image = await self.computer.screen.screenshot()
        return AgentResult(AgentResultKind.SCREENSHOT, screenshot=image)

    async def _detect(self, image: bytes, width: int, height: int) -> DetectionResult | None:
        if self.detector is None:
            return None
        try:
            return await self.detector.detect(image, width, height)
        except Exception as e:
            self._events.emit("agent.detection_failed", level=logging.WARNING, error=e)
            return None

    async def _execute(self, call: ToolCall) -> AgentMessage:
        try:
            message = await self.executor.execute(call)
        except Exception as e:
            self._events.emit("agent.tool_failed", level=logging.WARNING, tool=call.name, error=e)
            return AgentMessage.tool_result(call, f"Error: {e}")
        self._events.emit("agent.tool_result", level=logging.DEBUG, tool=call.name, result=message.text)
        return message
