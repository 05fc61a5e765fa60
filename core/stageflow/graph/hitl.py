"""
Human-in-the-loop protocol for approval gates.

A human gate asks an Interviewer a Question and routes on the Answer. The
interviewer decides where the question goes: auto-approval for unattended
runs, a scripted queue for tests, a callback, or an external client that
answers through ``ClientInterviewer.provide_answer``.

Timeouts are enforced by the gate handler, not the interviewer, so every
interviewer gets the same hard deadline.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class QuestionType(StrEnum):
    YES_NO = "yes_no"
    MULTIPLE_CHOICE = "multiple_choice"
    FREEFORM = "freeform"
    CONFIRMATION = "confirmation"


class AnswerValue(StrEnum):
    YES = "yes"
    NO = "no"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Option:
    key: str
    label: str


@dataclass
class Question:
    """A single question put to a human."""

    text: str
    type: QuestionType = QuestionType.FREEFORM
    options: list[Option] = field(default_factory=list)
    default: "Answer | None" = None
    timeout_seconds: float | None = None
    stage: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "type": self.type.value,
            "options": [{"key": o.key, "label": o.label} for o in self.options],
            "timeout_seconds": self.timeout_seconds,
            "stage": self.stage,
        }


@dataclass
class Answer:
    """A human's answer. ``value`` is an option key or an AnswerValue."""

    value: str = ""
    selected_option: Option | None = None
    text: str = ""

    @property
    def is_timeout(self) -> bool:
        return self.value == AnswerValue.TIMEOUT

    @property
    def is_skipped(self) -> bool:
        return self.value == AnswerValue.SKIPPED


class Interviewer(ABC):
    """Source of answers for human gates."""

    @abstractmethod
    async def ask(self, question: Question) -> Answer:
        """Return an answer to ``question``."""

    async def inform(self, message: str, stage: str = "") -> None:
        """Pass an informational message to the human. No-op by default."""


class AutoApproveInterviewer(Interviewer):
    """Approves everything: yes for yes/no, first option for choices."""

    async def ask(self, question: Question) -> Answer:
        if question.type in (QuestionType.YES_NO, QuestionType.CONFIRMATION):
            return Answer(value=AnswerValue.YES)
        if question.type == QuestionType.MULTIPLE_CHOICE and question.options:
            first = question.options[0]
            return Answer(value=first.key, selected_option=first)
        return Answer(value="auto-approved", text="auto-approved")


class QueueInterviewer(Interviewer):
    """Replays scripted answers in order, then answers SKIPPED."""

    def __init__(self, answers: list[Answer] | None = None):
        self._answers = list(answers or [])

    async def ask(self, question: Question) -> Answer:
        if self._answers:
            return self._answers.pop(0)
        return Answer(value=AnswerValue.SKIPPED)


class CallbackInterviewer(Interviewer):
    """Delegates to a plain or async callable."""

    def __init__(self, callback: Callable[[Question], Answer | Awaitable[Answer]]):
        self._callback = callback

    async def ask(self, question: Question) -> Answer:
        result = self._callback(question)
        if inspect.isawaitable(result):
            result = await result
        return result


class RecordingInterviewer(Interviewer):
    """Wraps another interviewer and records every exchange."""

    def __init__(self, inner: Interviewer):
        self.inner = inner
        self.recordings: list[tuple[Question, Answer]] = []

    async def ask(self, question: Question) -> Answer:
        answer = await self.inner.ask(question)
        self.recordings.append((question, answer))
        return answer

    async def inform(self, message: str, stage: str = "") -> None:
        await self.inner.inform(message, stage=stage)


class ClientInterviewer(Interviewer):
    """
    Waits for an external client to answer.

    ``ask()`` parks until ``provide_answer()`` is called from another task
    (a web handler, a TUI, a test). Only one question may be pending.
    """

    def __init__(self) -> None:
        self.pending: Question | None = None
        self._answer_event: asyncio.Event | None = None
        self._answer: Answer | None = None

    async def ask(self, question: Question) -> Answer:
        if self._answer_event is not None:
            raise RuntimeError("a question is already pending")

        self._answer_event = asyncio.Event()
        self._answer = None
        self.pending = question
        logger.info(f"? Waiting for answer: {question.text}")
        try:
            await self._answer_event.wait()
        finally:
            self._answer_event = None
            self.pending = None

        if self._answer is None:
            raise RuntimeError("answer event was set but no answer was provided")
        answer, self._answer = self._answer, None
        return answer

    async def provide_answer(self, answer: Answer) -> None:
        """Fulfil the pending ``ask()``."""
        if self._answer_event is None:
            raise RuntimeError("no pending question to answer")
        self._answer = answer
        self._answer_event.set()
