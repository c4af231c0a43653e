"""
Batch orchestration: one generation call per enabled prompt, run strictly
one after another.

Policy:
- preconditions (enabled prompts, images, credential) are reported on the
  result, never raised;
- a failed call marks only its own task failed and the batch moves on;
- a rejected credential marks the task failed and stops the batch, leaving
  the remaining tasks pending and raising credential_needed.
"""

import dataclasses
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterator, Optional

from .activity import ActivityLog
from .credentials import CredentialProvider
from .errors import (
    BananaBatchError,
    GenerationError,
    InvalidCredentialError,
    MissingCredentialError,
    NoEnabledPromptsError,
    NoImagesSelectedError,
)
from .generators import ImageGenerator
from .models import GenerationTask, PromptListState, ReferenceImage, TaskStatus, TokenUsage
from .pricing import DEFAULT_MODEL, ImageModel
from .usage import UsageLedger

logger = logging.getLogger(__name__)


class BatchEventType(Enum):
    QUEUED = "queued"
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"
    FINISHED = "finished"


@dataclass
class BatchEvent:
    """Progress notification for live rendering."""

    type: BatchEventType
    batch_id: str
    total: int
    index: Optional[int] = None
    task: Optional[GenerationTask] = None
    message: str = ""
    usage: Optional[TokenUsage] = None
    cost: float = 0.0


class StepOutcome(Enum):
    CONTINUE = "continue"
    ABORT = "abort"


@dataclass
class BatchSettings:
    """Generation parameters shared by every task of a batch."""

    aspect_ratio: str = "4:5"
    image_size: str = "2K"
    model: ImageModel = DEFAULT_MODEL
    temperature: float = 1.0


@dataclass
class BatchResult:
    """Outcome of one run() call."""

    batch_id: Optional[str] = None
    tasks: list[GenerationTask] = field(default_factory=list)
    error: Optional[BananaBatchError] = None
    credential_needed: bool = False
    aborted: bool = False

    @property
    def started(self) -> bool:
        return self.batch_id is not None

    def count(self, status: TaskStatus) -> int:
        return sum(1 for task in self.tasks if task.status == status)

    @property
    def completed_count(self) -> int:
        return self.count(TaskStatus.COMPLETED)

    @property
    def failed_count(self) -> int:
        return self.count(TaskStatus.FAILED)

    @property
    def pending_count(self) -> int:
        return self.count(TaskStatus.PENDING)


class TaskBoard:
    """The results currently on screen.

    Updates for a batch that has since been cleared or replaced are dropped.
    """

    def __init__(self):
        self.batch_id: Optional[str] = None
        self._tasks: list[GenerationTask] = []

    def start_batch(self, batch_id: str, tasks: list[GenerationTask]) -> None:
        self.batch_id = batch_id
        self._tasks = [dataclasses.replace(task) for task in tasks]

    def clear(self) -> None:
        self.batch_id = None
        self._tasks = []

    def publish(self, task: GenerationTask) -> bool:
        """Record a task's latest state; returns False for a discarded batch."""
        if task.batch_id != self.batch_id:
            logger.debug("Dropping update for discarded batch %s", task.batch_id)
            return False
        for i, current in enumerate(self._tasks):
            if current.id == task.id:
                self._tasks[i] = dataclasses.replace(task)
                return True
        return False

    @property
    def tasks(self) -> list[GenerationTask]:
        return list(self._tasks)


def new_batch_id() -> str:
    return f"batch-{datetime.now():%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"


def build_tasks(
    state: PromptListState,
    images: list[ReferenceImage],
    batch_id: str,
) -> list[GenerationTask]:
    """One task per enabled prompt, in list order, each carrying every image."""
    return [
        GenerationTask.create(
            batch_id=batch_id,
            prompt_name=item.name,
            composed_prompt_text=state.compose(item),
            input_images=images,
        )
        for item in state.enabled_items()
    ]


class BatchOrchestrator:
    """Runs batches against an image generator, one task at a time."""

    def __init__(
        self,
        generator: ImageGenerator,
        credentials: CredentialProvider,
        ledger: UsageLedger,
        board: Optional[TaskBoard] = None,
        activity: Optional[ActivityLog] = None,
    ):
        self.generator = generator
        self.credentials = credentials
        self.ledger = ledger
        self.board = board or TaskBoard()
        self.activity = activity
        self._observers: list[Callable[[BatchEvent], None]] = []

    def subscribe(self, observer: Callable[[BatchEvent], None]) -> None:
        self._observers.append(observer)

    def _log(self, message: str, type: str = "info") -> None:
        if self.activity is not None:
            self.activity.log(message, type)
        else:
            logger.info(message)

    def _emit(self, event: BatchEvent) -> None:
        for observer in list(self._observers):
            observer(event)

    def check_preconditions(
        self,
        state: PromptListState,
        images: list[ReferenceImage],
    ) -> Optional[BananaBatchError]:
        """Return the first reason the batch cannot start, or None."""
        if not state.enabled_items():
            return NoEnabledPromptsError()
        if not images:
            return NoImagesSelectedError()
        if not self.credentials.has_valid_credential():
            return MissingCredentialError()
        return None

    async def run(
        self,
        state: PromptListState,
        images: list[ReferenceImage],
        settings: Optional[BatchSettings] = None,
    ) -> BatchResult:
        """Build and execute a new batch from a prompt list snapshot."""
        settings = settings or BatchSettings()

        error = self.check_preconditions(state, images)
        if error is not None:
            self._log(f"Error: {error}", "error")
            return BatchResult(error=error)

        batch_id = new_batch_id()
        self._log(f"Starting batch for {len(images)} files...")
        tasks = build_tasks(state, images, batch_id)
        self.board.start_batch(batch_id, tasks)
        result = BatchResult(batch_id=batch_id, tasks=tasks)

        self._log(f"Queued {len(tasks)} generation tasks.")
        self._emit(BatchEvent(BatchEventType.QUEUED, batch_id, total=len(tasks)))

        queue: Iterator[tuple[int, GenerationTask]] = iter(enumerate(tasks))
        for index, task in queue:
            outcome = await self._step(task, index, len(tasks), settings)
            if outcome is StepOutcome.ABORT:
                result.aborted = True
                result.credential_needed = True
                self._log("API Key might be invalid or expired. Check environment or re-select key.", "error")
                self.credentials.request_credential()
                self._emit(BatchEvent(
                    BatchEventType.ABORTED, batch_id, total=len(tasks), index=index,
                    message="credential rejected",
                ))
                break

        self._log("Batch processing finished.", "success")
        self._emit(BatchEvent(BatchEventType.FINISHED, batch_id, total=len(tasks)))
        return result

    async def _step(
        self,
        task: GenerationTask,
        index: int,
        total: int,
        settings: BatchSettings,
    ) -> StepOutcome:
        """Execute one task; the return value tells the loop whether to go on."""
        task.start()
        self.board.publish(task)
        self._log(f"Processing [{index + 1}/{total}]:  {task.prompt_name}")
        self._emit(BatchEvent(BatchEventType.STARTED, task.batch_id, total=total, index=index, task=task))

        try:
            output = await self.generator.generate(
                task.input_images,
                task.composed_prompt_text,
                settings.aspect_ratio,
                settings.image_size,
                settings.model,
                settings.temperature,
            )
        except InvalidCredentialError as e:
            self._fail(task, index, total, str(e))
            return StepOutcome.ABORT
        except GenerationError as e:
            self._fail(task, index, total, str(e))
            return StepOutcome.CONTINUE
        except Exception as e:
            logger.exception("Unexpected error while generating %s", task.prompt_name)
            self._fail(task, index, total, str(e) or type(e).__name__)
            return StepOutcome.CONTINUE

        usage = output.usage
        cost = self.ledger.add_call(
            usage.input_tokens,
            usage.output_text_tokens,
            usage.output_image_tokens,
            settings.model,
        )
        task.complete(output.image_url, usage)
        self.board.publish(task)
        self._log(
            f"Success: ({task.prompt_name}) generated. Tokens: {usage.total_tokens} "
            f"(In: {usage.input_tokens}, Out: {usage.output_tokens})",
            "success",
        )
        self._emit(BatchEvent(
            BatchEventType.SUCCEEDED, task.batch_id, total=total, index=index, task=task,
            usage=usage, cost=cost,
        ))
        return StepOutcome.CONTINUE

    def _fail(self, task: GenerationTask, index: int, total: int, message: str) -> None:
        task.fail(message)
        self.board.publish(task)
        self._log(f"Failed: ({task.prompt_name}) - {message}", "error")
        self._emit(BatchEvent(
            BatchEventType.FAILED, task.batch_id, total=total, index=index, task=task,
            message=message,
        ))
