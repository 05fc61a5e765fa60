"""
Human gate - pause the pipeline for a person to pick the next edge.

Each outgoing edge becomes a choice. The choice key is taken from an
accelerator in the edge label (``[Y] Yes``, ``Y) Yes``, ``Y - Yes``) or else
the label's first character. The answer is turned into a suggested next id
so edge selection follows it.

The wait has a hard deadline: the node's ``human.timeout`` (or ``timeout``)
or the executor's configured default. On timeout the gate uses
``human.default_choice`` if it names a choice, otherwise it asks to be
retried.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from stageflow.graph.attributes import as_str, parse_duration_ms
from stageflow.graph.context import Context
from stageflow.graph.edge import Edge, Graph
from stageflow.graph.hitl import Answer, AnswerValue, Interviewer, Option, Question, QuestionType
from stageflow.graph.node import Node
from stageflow.graph.outcome import Outcome, StageStatus
from stageflow.handlers.base import Handler

if TYPE_CHECKING:
    from stageflow.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)

_ACCELERATOR_KEY_PATTERNS = (
    re.compile(r"^\[(.)\]\s*"),
    re.compile(r"^(.)\)\s*"),
    re.compile(r"^(.)\s+-\s*"),
)


@dataclass(frozen=True)
class Choice:
    key: str
    label: str
    target: str


def accelerator_key(label: str) -> str:
    for pattern in _ACCELERATOR_KEY_PATTERNS:
        match = pattern.match(label)
        if match:
            return match.group(1).upper()
    return label[:1].upper()


def build_choices(edges: list[Edge]) -> list[Choice]:
    choices = []
    for edge in edges:
        label = edge.label or edge.target
        choices.append(Choice(key=accelerator_key(label), label=label, target=edge.target))
    return choices


class WaitHumanHandler(Handler):
    """Asks an Interviewer which outgoing edge to take."""

    def __init__(
        self,
        interviewer: Interviewer,
        event_bus: EventBus | None = None,
        default_timeout_seconds: float | None = None,
    ):
        self.interviewer = interviewer
        self.event_bus = event_bus
        self.default_timeout_seconds = default_timeout_seconds

    async def execute(self, node: Node, context: Context, graph: Graph, logs_root: Path) -> Outcome:
        edges = graph.outgoing_edges(node.id)
        if not edges:
            return Outcome.fail("No outgoing edges for human gate")

        choices = build_choices(edges)
        timeout = self._timeout_seconds(node)
        question = Question(
            text=node.label or "Select an option:",
            type=QuestionType.MULTIPLE_CHOICE,
            options=[Option(key=c.key, label=c.label) for c in choices],
            timeout_seconds=timeout,
            stage=node.id,
        )

        if self.event_bus is not None:
            await self.event_bus.emit_interview_started(node_id=node.id, question=question.text)
        start = time.monotonic()

        try:
            if timeout is not None:
                answer = await asyncio.wait_for(self.interviewer.ask(question), timeout=timeout)
            else:
                answer = await self.interviewer.ask(question)
        except TimeoutError:
            answer = Answer(value=AnswerValue.TIMEOUT)

        duration_ms = int((time.monotonic() - start) * 1000)

        if answer.is_timeout:
            logger.warning(f"⏱ Human gate '{node.id}' timed out after {duration_ms}ms")
            if self.event_bus is not None:
                await self.event_bus.emit_interview_timeout(
                    node_id=node.id, question=question.text, duration_ms=duration_ms
                )
            return self._handle_timeout(node, choices)

        if self.event_bus is not None:
            await self.event_bus.emit_interview_completed(
                node_id=node.id,
                question=question.text,
                answer=answer.value or answer.text,
                duration_ms=duration_ms,
            )

        if answer.is_skipped:
            return Outcome.fail("human skipped interaction")

        selected = self._match(answer, choices) or choices[0]
        return self._selected(selected)

    def _timeout_seconds(self, node: Node) -> float | None:
        raw = node.get("human.timeout")
        if isinstance(raw, str):
            raw = parse_duration_ms(raw)
        if raw is None:
            raw = node.timeout
        if isinstance(raw, int | float) and not isinstance(raw, bool) and raw > 0:
            return raw / 1000
        return self.default_timeout_seconds

    def _handle_timeout(self, node: Node, choices: list[Choice]) -> Outcome:
        default_key = as_str(node.get("human.default_choice")).strip().lower()
        if default_key:
            for choice in choices:
                if choice.key.lower() == default_key:
                    return self._selected(choice)
        return Outcome(status=StageStatus.RETRY, failure_reason="human gate timeout, no default")

    @staticmethod
    def _match(answer: Answer, choices: list[Choice]) -> Choice | None:
        value = str(answer.value or "").strip().lower()
        if value:
            for choice in choices:
                if choice.key.lower() == value:
                    return choice
        if answer.selected_option is not None:
            selected_key = answer.selected_option.key.lower()
            for choice in choices:
                if choice.key.lower() == selected_key:
                    return choice
        if value:
            for choice in choices:
                if value in choice.label.lower():
                    return choice
        return None

    @staticmethod
    def _selected(choice: Choice) -> Outcome:
        return Outcome(
            status=StageStatus.SUCCESS,
            suggested_next_ids=(choice.target,),
            context_updates={
                "human.gate.selected": choice.key,
                "human.gate.label": choice.label,
            },
        )
