"""
Local-first list editing with quiet-period autosave.

Edits are applied to the in-memory list immediately and observers see the
new snapshot synchronously. Persisting to the remote store happens later,
once no edit has arrived for a quiet period. The sync state is an explicit
state machine:

    UNINITIALIZED --initialize--> CLEAN --edit--> DIRTY --flush--> FLUSHING
    FLUSHING --success, no newer edit--> CLEAN
    FLUSHING --failure or newer edit--> DIRTY

Inbound remote snapshots must not be applied while there are unflushed
changes (DIRTY or FLUSHING); see sync.RemoteSyncBridge.
"""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from .errors import PersistenceError
from .models import PromptItem, PromptListState

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


class SyncPhase(Enum):
    UNINITIALIZED = "uninitialized"
    CLEAN = "clean"
    DIRTY = "dirty"
    FLUSHING = "flushing"


@dataclass
class DirtyState:
    """Single source of truth for autosave and inbound-sync gating."""

    phase: SyncPhase = SyncPhase.UNINITIALIZED
    last_edit_at: float = 0.0
    edit_count: int = 0  # Monotonic, bumped on every edit

    @property
    def has_unflushed_changes(self) -> bool:
        return self.phase in (SyncPhase.DIRTY, SyncPhase.FLUSHING)

    def mark_initialized(self) -> None:
        self.phase = SyncPhase.CLEAN

    def mark_edited(self, now: float) -> None:
        self.last_edit_at = now
        self.edit_count += 1
        # A flush in progress keeps its phase; finish_flush sees the newer edit.
        if self.phase != SyncPhase.FLUSHING:
            self.phase = SyncPhase.DIRTY

    def begin_flush(self) -> int:
        """Enter FLUSHING and return the edit count the flush covers."""
        if self.phase != SyncPhase.DIRTY:
            raise RuntimeError(f"Cannot flush from phase {self.phase.value}")
        self.phase = SyncPhase.FLUSHING
        return self.edit_count

    def finish_flush(self, covered_edit_count: int, success: bool) -> None:
        if self.phase != SyncPhase.FLUSHING:
            raise RuntimeError(f"No flush in progress (phase {self.phase.value})")
        if success and self.edit_count == covered_edit_count:
            self.phase = SyncPhase.CLEAN
        else:
            self.phase = SyncPhase.DIRTY

    def flush_due(self, now: float, quiet_period: float) -> bool:
        return self.phase == SyncPhase.DIRTY and now - self.last_edit_at >= quiet_period


class EditableList(Generic[T]):
    """Ordered list of dataclass items with local-first edits and autosave.

    Usage:
        editor = EditableList(item_factory=Row, quiet_period=10.0)
        editor.on_change(lambda rows: print(rows))
        editor.set_flush_handler(store.save_rows)
        editor.initialize(rows_from_store)

        editor.edit(0, "title", "new title")   # observers notified now
        await editor.tick()                     # flushes once quiet long enough
    """

    DEFAULT_QUIET_PERIOD = 10.0

    def __init__(
        self,
        item_factory: Callable[[], T],
        quiet_period: Optional[float] = None,
        clock: Optional[Clock] = None,
        flush_handler: Optional[Callable[[Any], Awaitable[None]]] = None,
    ):
        self.item_factory = item_factory
        self.quiet_period = self.DEFAULT_QUIET_PERIOD if quiet_period is None else quiet_period
        self.clock = clock or time.monotonic
        self.state = DirtyState()
        self._items: list[T] = []
        self._observers: list[Callable[[Any], None]] = []
        self._flush_handler = flush_handler
        self._fields = {f.name for f in dataclasses.fields(item_factory())}

    # Observers and wiring

    def on_change(self, observer: Callable[[Any], None]) -> None:
        self._observers.append(observer)

    def set_flush_handler(self, handler: Callable[[Any], Awaitable[None]]) -> None:
        self._flush_handler = handler

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for observer in list(self._observers):
            observer(snapshot)

    def _touch(self) -> None:
        self.state.mark_edited(self.clock())
        self._notify()

    # Snapshots

    @property
    def items(self) -> list[T]:
        return [dataclasses.replace(item) for item in self._items]

    def __len__(self) -> int:
        return len(self._items)

    def snapshot(self) -> Any:
        """Detached copy of the current contents."""
        return self.items

    def _load(self, snapshot: Any) -> None:
        self._items = [dataclasses.replace(item) for item in snapshot]

    def initialize(self, snapshot: Any, force: bool = False) -> bool:
        """Populate from a remote snapshot.

        Only the first call takes effect; later snapshots are ignored unless
        forced. Returns True if the snapshot was applied.
        """
        if self.state.phase != SyncPhase.UNINITIALIZED and not force:
            logger.debug("Ignoring snapshot, editor already initialized")
            return False
        self._load(snapshot)
        self.state.mark_initialized()
        self._notify()
        return True

    # Edits

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._items):
            raise IndexError(f"Item index {index} out of range (0..{len(self._items) - 1})")

    def edit(self, index: int, field: str, value: Any) -> None:
        """Set one field of one item."""
        if field not in self._fields:
            raise KeyError(f"Unknown field: {field}")
        self._check_index(index)
        current = getattr(self._items[index], field)
        if current is not None and not isinstance(value, type(current)):
            raise TypeError(f"Field {field} expects {type(current).__name__}, got {type(value).__name__}")
        self._items[index] = dataclasses.replace(self._items[index], **{field: value})
        self._touch()

    def add(self) -> int:
        """Append a blank item and return its index."""
        self._items.append(self.item_factory())
        self._touch()
        return len(self._items) - 1

    def remove(self, index: int) -> None:
        self._check_index(index)
        del self._items[index]
        self._touch()

    def move(self, from_index: int, to_index: int) -> None:
        """Splice an item to a new position (remove, then insert)."""
        self._check_index(from_index)
        self._check_index(to_index)
        if from_index == to_index:
            return
        item = self._items.pop(from_index)
        self._items.insert(to_index, item)
        self._touch()

    # Autosave

    def flush_due(self, now: Optional[float] = None) -> bool:
        now = self.clock() if now is None else now
        return self.state.flush_due(now, self.quiet_period)

    async def flush(self) -> bool:
        """Send the current snapshot to the flush handler.

        Returns True on success. A failure leaves the list dirty so the next
        tick retries.
        """
        if self.state.phase != SyncPhase.DIRTY:
            return False
        if self._flush_handler is None:
            logger.debug("No flush handler attached, keeping changes local")
            return False

        covered = self.state.begin_flush()
        snapshot = self.snapshot()
        try:
            await self._flush_handler(snapshot)
        except PersistenceError as e:
            self.state.finish_flush(covered, success=False)
            logger.error("Autosave failed, will retry: %s", e)
            return False
        except BaseException:
            self.state.finish_flush(covered, success=False)
            raise

        self.state.finish_flush(covered, success=True)
        if self.state.phase == SyncPhase.DIRTY:
            logger.debug("Edits arrived during flush, staying dirty")
        return True

    async def tick(self) -> bool:
        """One autosave check; flushes if the quiet period has elapsed."""
        if not self.flush_due():
            return False
        return await self.flush()

    async def run_autosave(self, tick_interval: float = 1.0) -> None:
        """Tick forever until cancelled."""
        while True:
            await asyncio.sleep(tick_interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("Autosave tick failed")


class PromptListEditor(EditableList[PromptItem]):
    """Prompt list editor; the before/after text share the list's dirty window."""

    DEFAULT_QUIET_PERIOD = 5.0

    def __init__(
        self,
        quiet_period: Optional[float] = None,
        clock: Optional[Clock] = None,
        flush_handler: Optional[Callable[[PromptListState], Awaitable[None]]] = None,
    ):
        super().__init__(
            item_factory=PromptItem,
            quiet_period=quiet_period,
            clock=clock,
            flush_handler=flush_handler,
        )
        self.before_text = ""
        self.after_text = ""

    def snapshot(self) -> PromptListState:
        return PromptListState(
            items=self.items,
            before_text=self.before_text,
            after_text=self.after_text,
        )

    def _load(self, snapshot: PromptListState) -> None:
        super()._load(snapshot.items)
        self.before_text = snapshot.before_text
        self.after_text = snapshot.after_text

    def set_before_text(self, text: str) -> None:
        self.before_text = text
        self._touch()

    def set_after_text(self, text: str) -> None:
        self.after_text = text
        self._touch()
