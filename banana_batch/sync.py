"""
Reconciliation between local state and the remote document store.

RemoteSyncBridge keeps a PromptListEditor and the user's prompt document
eventually consistent:

- outbound: the editor's quiet-period flush writes the snapshot with a sync
  marker (this client's id + a monotonically increasing revision);
- inbound: a changed remote document is applied only when the editor has no
  unflushed changes and the document is not the echo of one of our writes.

LifetimeUsageSync pushes the ledger's lifetime totals after they change and
merges the remote totals on load (larger value wins).
"""

import asyncio
import logging
import uuid
from typing import Optional

from .editor import PromptListEditor, SyncPhase
from .errors import PersistenceError
from .models import LifetimeUsage, PromptListState
from .remote import PromptDocument, RemoteDocumentStore
from .usage import UsageLedger

logger = logging.getLogger(__name__)


class RemoteSyncBridge:
    """Connects a prompt editor to a user's remote prompt document."""

    PUSH_HISTORY = 32  # Pushed states remembered for echo matching

    def __init__(
        self,
        editor: PromptListEditor,
        store: RemoteDocumentStore,
        user_id: str,
        client_id: Optional[str] = None,
    ):
        self.editor = editor
        self.store = store
        self.user_id = user_id
        self.client_id = client_id or uuid.uuid4().hex
        self.revision = 0  # Revision of the last outbound write (sent, not necessarily stored)
        self.flushed_revision = 0  # Revision of the last write the store accepted
        self._pushed: dict[int, PromptListState] = {}
        self._unsubscribe = None

    def attach(self) -> None:
        """Route editor flushes to the store and store notifications to the editor."""
        self.editor.set_flush_handler(self.push)
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self.user_id, self.receive)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def load(self) -> PromptListState:
        """Read the remote document and initialize the editor from it.

        A missing document is created empty.
        """
        document = await self.store.read_prompt_document(self.user_id)
        if document is None:
            logger.info("No prompt document for %s, creating one", self.user_id)
            document = PromptDocument()
            await self.store.write_prompt_document(self.user_id, document)
        self.editor.initialize(document.state)
        return self.editor.snapshot()

    async def push(self, state: PromptListState) -> None:
        """Flush handler: write the snapshot with a fresh sync marker."""
        self.revision += 1
        revision = self.revision
        document = PromptDocument(state=state, origin=self.client_id, revision=revision)
        self._pushed[revision] = state
        for old in [r for r in self._pushed if r <= revision - self.PUSH_HISTORY]:
            del self._pushed[old]
        await self.store.write_prompt_document(self.user_id, document)
        self.flushed_revision = revision
        logger.info("Prompts saved to cloud (revision %d)", revision)

    def is_own_echo(self, document: PromptDocument) -> bool:
        """A document is our echo only if it still holds what we wrote under its marker."""
        if not document.marked or document.origin != self.client_id:
            return False
        if document.revision > self.revision:
            return False
        pushed = self._pushed.get(document.revision)
        return pushed is None or pushed == document.state

    def receive(self, document: PromptDocument) -> bool:
        """Handle an inbound change notification. Returns True if it was applied."""
        if self.is_own_echo(document):
            logger.debug("Ignoring echo of revision %s", document.revision)
            return False

        if self.editor.state.has_unflushed_changes:
            logger.info("Remote update suppressed: local edits not yet saved")
            return False

        if self.editor.state.phase == SyncPhase.UNINITIALIZED:
            return self.editor.initialize(document.state)

        if document.state == self.editor.snapshot():
            return False

        applied = self.editor.initialize(document.state, force=True)
        if applied:
            logger.info("Applied remote prompt update from %s", document.origin or "unknown origin")
        return applied

    async def poll(self) -> bool:
        """Read the remote document and treat it as an inbound update."""
        document = await self.store.read_prompt_document(self.user_id)
        if document is None:
            return False
        return self.receive(document)


class LifetimeUsageSync:
    """Keeps the ledger's lifetime totals in step with the remote store."""

    def __init__(self, ledger: UsageLedger, store: RemoteDocumentStore, user_id: str):
        self.ledger = ledger
        self.store = store
        self.user_id = user_id
        self._last_pushed = ledger.lifetime
        self._pending: set = set()
        ledger.subscribe(self._on_ledger_change)

    async def load(self) -> bool:
        """Merge the remote lifetime totals into the ledger."""
        try:
            remote = await self.store.read_lifetime_usage(self.user_id)
        except PersistenceError as e:
            logger.error("Failed to load lifetime usage: %s", e)
            return False
        changed = self.ledger.merge_remote(remote)
        self._last_pushed = self.ledger.lifetime
        return changed

    def _on_ledger_change(self, ledger: UsageLedger) -> None:
        if ledger.lifetime == self._last_pushed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Picked up by the next push_if_changed()
            return
        task = loop.create_task(self.push_if_changed())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def push_if_changed(self) -> bool:
        current: LifetimeUsage = self.ledger.lifetime
        if current == self._last_pushed:
            return False
        previous = self._last_pushed
        self._last_pushed = current
        try:
            await self.store.write_lifetime_usage(self.user_id, current)
        except PersistenceError as e:
            self._last_pushed = previous
            logger.error("Failed to sync lifetime usage to cloud: %s", e)
            return False
        return True

    async def drain(self) -> None:
        """Wait for pushes started by ledger changes."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
        await self.push_if_changed()
