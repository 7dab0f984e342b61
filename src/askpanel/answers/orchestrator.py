"""Submission orchestrator: one request per submission, input reset on dispatch."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..errors import RequestFailed
from .client import AnswerClient
from .models import AnswerSet, Attachment, PendingSubmission

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorState:
    """Observable submission state."""
    pending: PendingSubmission
    answers: Optional[AnswerSet]
    loading: bool


class SubmissionOrchestrator:
    """Owns the staged input, the current AnswerSet and the loading flag.

    Typed submits and finalized voice utterances both go through
    ``submit``. Accepted submissions are serialized: each waits for the
    previous request to complete, so answers are applied in submission
    order and requests never overlap. ``loading`` stays set until the last
    outstanding submission has finished, whatever its outcome.
    """

    def __init__(self, client: AnswerClient):
        self.client = client

        self._pending = PendingSubmission()
        self._answers: Optional[AnswerSet] = None
        self._loading = False
        self._outstanding = 0
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

        self._on_change: list[Callable[[OrchestratorState], None]] = []

    @property
    def pending(self) -> PendingSubmission:
        return self._pending

    @property
    def answers(self) -> Optional[AnswerSet]:
        return self._answers

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def state(self) -> OrchestratorState:
        """Snapshot of the observable submission state."""
        return OrchestratorState(
            pending=PendingSubmission(self._pending.text, self._pending.attachment),
            answers=self._answers,
            loading=self._loading,
        )

    def on_change(self, callback: Callable[[OrchestratorState], None]) -> None:
        """Register callback for state changes."""
        self._on_change.append(callback)

    # ==================== Input ====================

    def set_text(self, text: str) -> None:
        self._pending.text = text
        self._notify_change()

    def set_attachment(self, attachment: Optional[Attachment]) -> None:
        self._pending.attachment = attachment
        self._notify_change()

    def clear_attachment(self) -> None:
        self.set_attachment(None)

    def clear(self) -> None:
        """Reset the staged input."""
        self._pending = PendingSubmission()
        self._notify_change()

    # ==================== Submission ====================

    def _accept(self, submission: Optional[PendingSubmission]) -> Optional[PendingSubmission]:
        """Validate, take ownership of the input and mark loading.

        Runs without yielding to the loop so the staged input is captured and
        cleared atomically with the decision to send it. An explicit
        submission leaves the staged input alone.
        """
        staged = submission is None
        if staged:
            submission = self._pending

        if submission.is_empty:
            logger.debug("Empty submission ignored")
            return None

        submission = PendingSubmission(submission.text, submission.attachment)
        if staged:
            self._pending = PendingSubmission()
        self._outstanding += 1
        self._loading = True
        self._notify_change()
        return submission

    async def submit(self, submission: Optional[PendingSubmission] = None) -> bool:
        """Submit the given or staged input. Returns False if rejected."""
        accepted = self._accept(submission)
        if accepted is None:
            return False
        await self._send(accepted)
        return True

    def submit_nowait(self, submission: Optional[PendingSubmission] = None) -> Optional[asyncio.Task]:
        """Accept now and send in a background task on the running loop."""
        accepted = self._accept(submission)
        if accepted is None:
            return None

        task = asyncio.get_running_loop().create_task(self._send(accepted))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def submit_utterance(self, text: str) -> Optional[asyncio.Task]:
        """Capture consumer: send a finalized transcript with any staged file.

        The staged file goes with the utterance and is cleared; text being
        typed meanwhile stays staged.
        """
        logger.info(f"Utterance: '{text[:50]}'")
        attachment = self._pending.attachment
        task = self.submit_nowait(PendingSubmission(text, attachment))
        if task is not None and attachment is not None:
            self.clear_attachment()
        return task

    async def _send(self, submission: PendingSubmission) -> None:
        try:
            async with self._send_lock:
                answers = await self.client.ask(submission)
            self._answers = answers
            logger.info(f"Answers received from: {', '.join(answers.providers) or 'no providers'}")
        except RequestFailed as e:
            logger.error(f"Submission failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected submission error: {e}", exc_info=True)
        finally:
            self._outstanding -= 1
            if self._outstanding == 0:
                self._loading = False
            self._notify_change()

    async def drain(self) -> None:
        """Wait for background submissions to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _notify_change(self) -> None:
        state = self.state
        for callback in self._on_change:
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Submission state callback error: {e}")
