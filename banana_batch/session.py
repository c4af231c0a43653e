"""
Application session for one signed-in user.

Wires the prompt editor, remote sync, usage ledger, preferences and the batch
orchestrator together the way the app uses them.
"""

import asyncio
import base64
import binascii
import logging
import mimetypes
import re
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .activity import ActivityLog
from .config import Config
from .credentials import CredentialProvider
from .editor import Clock, EditableList, PromptListEditor
from .errors import AccessDeniedError, BananaBatchError, PersistenceError
from .generators import ImageGenerator
from .models import GenerationTask, ReferenceImage
from .orchestrator import BatchOrchestrator, BatchResult, BatchSettings, TaskBoard
from .pricing import ImageModel
from .remote import RemoteDocumentStore
from .storage import KeyValueStore, Preferences
from .sync import LifetimeUsageSync, RemoteSyncBridge
from .usage import CostBreakdown, UsageLedger

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+/-]+)?(?:;[\w=.+-]+)*;base64,(?P<data>.*)$", re.DOTALL)


def decode_data_url(url: str) -> tuple[str, bytes]:
    """Split a base64 data URL into (mime type, bytes)."""
    match = _DATA_URL.match(url or "")
    if not match:
        raise ValueError("Not a base64 data URL")
    try:
        data = base64.b64decode(match.group("data"))
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    return match.group("mime") or "application/octet-stream", data


def result_file_name(task: GenerationTask, mime_type: str = "image/jpeg") -> str:
    """Download name: <first image stem>_<prompt name>.<ext>."""
    stem = task.input_images[0].stem if task.input_images else "image"
    extension = ".jpg" if mime_type == "image/jpeg" else mimetypes.guess_extension(mime_type) or ".bin"
    return f"{stem}_{task.prompt_name}{extension}"



def unique_path(path: Path) -> Path:
    """Return path, or the first free <stem>_2, <stem>_3, ... beside it."""
    candidate = path
    counter = 2
    while candidate.exists():
        candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
        counter += 1
    return candidate

class BatchSession:
    """Everything one user needs to edit prompts and run batches.

    Usage:
        session = BatchSession(config, store, local_store, generator, credentials)
        await session.open()
        session.start_autosave()
        session.editor.add()
        session.select_images([ReferenceImage.from_path(p) for p in paths])
        result = await session.run_batch()
        await session.close()
    """

    def __init__(
        self,
        config: Config,
        store: RemoteDocumentStore,
        local_store: KeyValueStore,
        generator: ImageGenerator,
        credentials: CredentialProvider,
        user_id: Optional[str] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self.store = store
        self.user_id = user_id or config.storage.user_id
        self.credentials = credentials
        self.generator = generator
        self.clock = clock

        defaults = config.defaults
        self.preferences = Preferences(
            local_store,
            aspect_ratio=defaults.aspect_ratio,
            image_size=defaults.image_size,
            model=defaults.model,
            temperature=defaults.temperature,
        )
        self.activity = ActivityLog()

        self.ledger: UsageLedger = self.preferences.load_usage()
        self.ledger.subscribe(self.preferences.save_usage)

        self.editor = PromptListEditor(quiet_period=defaults.quiet_period_seconds, clock=clock)
        self.bridge = RemoteSyncBridge(self.editor, store, self.user_id)
        self.usage_sync = LifetimeUsageSync(self.ledger, store, self.user_id)

        self.board = TaskBoard()
        self.orchestrator = BatchOrchestrator(
            generator, credentials, self.ledger, board=self.board, activity=self.activity,
        )
        self.images: list[ReferenceImage] = []
        self._autosave_task: Optional[asyncio.Task] = None

    async def open(self) -> None:
        """Check access, then load prompts and lifetime usage."""
        allowed = await self.store.read_access_list()
        if self.user_id not in allowed:
            raise AccessDeniedError(f"{self.user_id or 'Anonymous user'} is not on the access list")

        self.bridge.attach()
        try:
            await self.bridge.load()
        except PersistenceError:
            self.activity.error("Failed to load user profile.")
            raise
        self.activity.info("User profile loaded.")
        await self.usage_sync.load()

        if self.credentials.has_valid_credential():
            self.activity.info("Using environment API Key.")
        else:
            self.activity.warning("No API Key detected. Set GEMINI_API_KEY in your environment.")

    def start_autosave(self) -> asyncio.Task:
        if self._autosave_task is None or self._autosave_task.done():
            self._autosave_task = asyncio.create_task(
                self.editor.run_autosave(self.config.defaults.tick_interval_seconds)
            )
        return self._autosave_task

    async def close(self) -> None:
        """Stop autosave and push anything still pending."""
        if self._autosave_task is not None:
            self._autosave_task.cancel()
            try:
                await self._autosave_task
            except asyncio.CancelledError:
                pass
            self._autosave_task = None

        if self.editor.state.has_unflushed_changes:
            await self.editor.flush()
        await self.usage_sync.drain()
        self.bridge.detach()
        await self.generator.aclose()

    async def __aenter__(self) -> "BatchSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # Selection and settings

    def select_images(self, images: list[ReferenceImage]) -> None:
        self.images = list(images)
        self.activity.info(f"Selected {len(self.images)} file(s) from path.")

    @property
    def model(self) -> ImageModel:
        return self.preferences.model

    def switch_model(self, model: Union[str, ImageModel]) -> ImageModel:
        """Select another model; session usage is cleared since prices differ."""
        model = ImageModel.from_string(model)
        self.preferences.model = model
        self.ledger.reset()
        self.activity.info("Model changed. Token usage cleared.")
        return model

    @property
    def settings(self) -> BatchSettings:
        return BatchSettings(
            aspect_ratio=self.preferences.aspect_ratio,
            image_size=self.preferences.image_size,
            model=self.preferences.model,
            temperature=self.preferences.temperature,
        )

    def cost_breakdown(self) -> CostBreakdown:
        return self.ledger.cost_breakdown(self.preferences.model)

    # Batches

    async def run_batch(self) -> BatchResult:
        """Run a batch from the editor's current in-memory prompts."""
        return await self.orchestrator.run(self.editor.snapshot(), self.images, self.settings)

    def clear(self) -> None:
        """Discard results, reset session usage and the console."""
        self.board.clear()
        self.ledger.reset()
        self.activity.clear()

    def new_list_editor(
        self,
        item_factory: Callable[[], Any],
        flush_handler: Optional[Callable[[Any], Any]] = None,
    ) -> EditableList:
        """A generic autosaving list using the configured simple quiet period."""
        return EditableList(
            item_factory,
            quiet_period=self.config.defaults.simple_quiet_period_seconds,
            clock=self.clock,
            flush_handler=flush_handler,
        )

    def save_result(self, task: GenerationTask, directory: Path) -> Path:
        """Write a completed task's image to disk and return its path.

        An existing file is never overwritten; duplicate names get a numeric suffix.
        """
        if not task.result_image_url:
            raise BananaBatchError(f"Task {task.id} has no image")
        try:
            mime_type, data = decode_data_url(task.result_image_url)
        except ValueError as e:
            raise BananaBatchError(f"Task {task.id} has an unreadable image: {e}") from e
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = unique_path(directory / result_file_name(task, mime_type))
        path.write_bytes(data)
        logger.info("Saved %s", path)
        return path
