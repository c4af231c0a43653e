"""Tests for prompt document sync and lifetime usage sync."""

import json

import pytest

from banana_batch.editor import PromptListEditor, SyncPhase
from banana_batch.models import LifetimeUsage, PromptItem, PromptListState
from banana_batch.pricing import ImageModel
from banana_batch.remote import FileDocumentStore, MemoryDocumentStore, PromptDocument
from banana_batch.sync import LifetimeUsageSync, RemoteSyncBridge
from banana_batch.usage import UsageLedger


USER = "ana@example.com"


def remote_state(*names):
    return PromptListState(items=[PromptItem(name=n) for n in names])


@pytest.fixture
def store():
    return MemoryDocumentStore(allowed_emails=[USER])


@pytest.fixture
def editor():
    return PromptListEditor(quiet_period=5.0, clock=lambda: 0.0)


@pytest.fixture
def bridge(editor, store):
    bridge = RemoteSyncBridge(editor, store, USER, client_id="this-tab")
    bridge.attach()
    return bridge


class TestLoad:
    @pytest.mark.asyncio
    async def test_missing_document_is_created_empty(self, bridge, editor, store):
        state = await bridge.load()
        assert state.items == []
        assert USER in store.documents
        assert store.documents[USER]["prompts"] == []
        assert editor.state.phase == SyncPhase.CLEAN

    @pytest.mark.asyncio
    async def test_existing_document_initializes_editor(self, bridge, editor, store):
        store.documents[USER] = PromptDocument(remote_state("wide", "close")).to_dict()
        await bridge.load()
        assert [i.name for i in editor.items] == ["wide", "close"]


class TestInbound:
    @pytest.mark.asyncio
    async def test_foreign_update_applied_when_clean(self, bridge, editor):
        await bridge.load()
        applied = bridge.receive(PromptDocument(remote_state("from-laptop"), origin="laptop", revision=1))
        assert applied
        assert [i.name for i in editor.items] == ["from-laptop"]
        assert editor.state.phase == SyncPhase.CLEAN

    @pytest.mark.asyncio
    async def test_update_suppressed_while_dirty(self, bridge, editor):
        await bridge.load()
        editor.add()
        editor.edit(0, "name", "local")

        applied = bridge.receive(PromptDocument(remote_state("remote"), origin="laptop", revision=7))
        assert not applied
        assert [i.name for i in editor.items] == ["local"]
        assert editor.state.phase == SyncPhase.DIRTY

    @pytest.mark.asyncio
    async def test_own_echo_is_ignored(self, bridge, editor, store):
        await bridge.load()
        editor.add()
        editor.edit(0, "name", "mine")
        await editor.flush()

        assert bridge.revision == 1
        assert bridge.flushed_revision == 1
        assert store.documents[USER]["_sync"] == {"origin": "this-tab", "revision": 1}
        echo = PromptDocument(remote_state("mine"), origin="this-tab", revision=1)
        assert bridge.is_own_echo(echo)
        assert not bridge.receive(echo)

    @pytest.mark.asyncio
    async def test_unmarked_write_after_flush_is_applied(self, bridge, editor, store):
        await bridge.load()
        editor.add()
        editor.edit(0, "name", "mine")
        await editor.flush()

        await store.write_prompt_document(USER, PromptDocument(remote_state("console-edit")))

        assert "_sync" not in store.documents[USER]
        assert [i.name for i in editor.items] == ["console-edit"]

    @pytest.mark.asyncio
    async def test_own_marker_with_other_content_is_applied(self, bridge, editor):
        await bridge.load()
        editor.add()
        editor.edit(0, "name", "mine")
        await editor.flush()

        edited = PromptDocument(remote_state("edited-by-hand"), origin="this-tab", revision=1)
        assert not bridge.is_own_echo(edited)
        assert bridge.receive(edited)
        assert [i.name for i in editor.items] == ["edited-by-hand"]

    @pytest.mark.asyncio
    async def test_foreign_update_after_flush_is_applied(self, bridge, editor):
        await bridge.load()
        editor.add()
        await editor.flush()
        assert editor.state.phase == SyncPhase.CLEAN

        assert bridge.receive(PromptDocument(remote_state("a", "b"), origin="laptop", revision=1))
        assert [i.name for i in editor.items] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_unmarked_update_is_eligible(self, bridge, editor):
        await bridge.load()
        assert bridge.receive(PromptDocument(remote_state("console-edit")))

    @pytest.mark.asyncio
    async def test_first_update_initializes_editor(self, bridge, editor):
        assert editor.state.phase == SyncPhase.UNINITIALIZED
        assert bridge.receive(PromptDocument(remote_state("early"), origin="laptop", revision=3))
        assert editor.state.phase == SyncPhase.CLEAN

    @pytest.mark.asyncio
    async def test_identical_state_is_a_no_op(self, bridge, editor, store):
        store.documents[USER] = PromptDocument(remote_state("same")).to_dict()
        await bridge.load()
        assert not bridge.receive(PromptDocument(remote_state("same"), origin="laptop", revision=2))

    @pytest.mark.asyncio
    async def test_other_client_write_reaches_this_editor(self, bridge, editor, store):
        await bridge.load()
        other_editor = PromptListEditor(clock=lambda: 0.0)
        other = RemoteSyncBridge(other_editor, store, USER, client_id="laptop")
        other.attach()
        await other.load()
        other_editor.add()
        other_editor.edit(0, "name", "shared")
        await other_editor.flush()

        assert [i.name for i in editor.items] == ["shared"]

    @pytest.mark.asyncio
    async def test_detach_stops_notifications(self, bridge, editor, store):
        await bridge.load()
        bridge.detach()
        await store.write_prompt_document(USER, PromptDocument(remote_state("x"), origin="laptop", revision=1))
        assert editor.items == []

    @pytest.mark.asyncio
    async def test_poll_reads_remote_document(self, bridge, editor, store):
        await bridge.load()
        store.documents[USER].update(PromptDocument(remote_state("polled"), origin="laptop", revision=4).to_dict())
        assert await bridge.poll()
        assert [i.name for i in editor.items] == ["polled"]


class TestOutboundFailure:
    @pytest.mark.asyncio
    async def test_failed_write_keeps_editor_dirty(self, bridge, editor, store):
        await bridge.load()
        editor.add()
        store.fail_writes = True
        assert not await editor.flush()
        assert editor.state.phase == SyncPhase.DIRTY
        assert bridge.flushed_revision == 0

        store.fail_writes = False
        assert await editor.flush()
        assert bridge.flushed_revision == bridge.revision


class TestFileDocumentStore:
    @pytest.mark.asyncio
    async def test_prompt_document_round_trip(self, tmp_path):
        store = FileDocumentStore(tmp_path)
        document = PromptDocument(remote_state("wide"), origin="tab", revision=2)
        await store.write_prompt_document(USER, document)

        loaded = await store.read_prompt_document(USER)
        assert loaded == document
        assert await store.read_prompt_document("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_unmarked_write_clears_marker(self, tmp_path):
        store = FileDocumentStore(tmp_path)
        await store.write_prompt_document(USER, PromptDocument(remote_state("a"), origin="tab", revision=2))
        await store.write_prompt_document(USER, PromptDocument(remote_state("b")))

        loaded = await store.read_prompt_document(USER)
        assert loaded.origin is None
        assert loaded.revision is None
        assert "_sync" not in json.loads(store.user_path(USER).read_text())

    @pytest.mark.asyncio
    async def test_hand_edit_after_flush_is_applied_on_poll(self, tmp_path):
        store = FileDocumentStore(tmp_path)
        editor = PromptListEditor(quiet_period=5.0, clock=lambda: 0.0)
        bridge = RemoteSyncBridge(editor, store, USER, client_id="this-tab")
        bridge.attach()
        await bridge.load()
        editor.add()
        editor.edit(0, "name", "mine")
        await editor.flush()

        path = store.user_path(USER)
        data = json.loads(path.read_text())
        data["prompts"][0]["name"] = "edited-by-hand"
        path.write_text(json.dumps(data))

        assert await bridge.poll()
        assert [i.name for i in editor.items] == ["edited-by-hand"]

    @pytest.mark.asyncio
    async def test_lifetime_usage_shares_user_document(self, tmp_path):
        store = FileDocumentStore(tmp_path)
        await store.write_prompt_document(USER, PromptDocument(remote_state("wide")))
        await store.write_lifetime_usage(USER, LifetimeUsage(1.25, 4))

        assert await store.read_lifetime_usage(USER) == LifetimeUsage(1.25, 4)
        assert [i.name for i in (await store.read_prompt_document(USER)).state.items] == ["wide"]

    @pytest.mark.asyncio
    async def test_access_list(self, tmp_path):
        store = FileDocumentStore(tmp_path)
        assert await store.read_access_list() == []
        store.write_access_list([USER])
        assert await store.read_access_list() == [USER]

    @pytest.mark.asyncio
    async def test_corrupt_access_list_denies_everyone(self, tmp_path):
        (tmp_path / "access.json").write_text("{oops")
        assert await FileDocumentStore(tmp_path).read_access_list() == []


class TestLifetimeUsageSync:
    @pytest.mark.asyncio
    async def test_load_adopts_larger_remote_values(self, store):
        await store.write_lifetime_usage(USER, LifetimeUsage(5.0, 50))
        ledger = UsageLedger(lifetime_cost=1.0, lifetime_image_count=60)
        sync = LifetimeUsageSync(ledger, store, USER)

        assert await sync.load()
        await sync.drain()
        assert ledger.lifetime_cost == 5.0
        assert ledger.lifetime_image_count == 60

    @pytest.mark.asyncio
    async def test_new_usage_is_pushed(self, store):
        ledger = UsageLedger()
        sync = LifetimeUsageSync(ledger, store, USER)
        await sync.load()

        ledger.add_call(0, 0, 1290, ImageModel.NANO_BANANA)
        await sync.drain()

        remote = await store.read_lifetime_usage(USER)
        assert remote.lifetime_image_count == 1
        assert remote.lifetime_cost == pytest.approx(0.039)

    @pytest.mark.asyncio
    async def test_reset_does_not_push(self, store):
        ledger = UsageLedger()
        sync = LifetimeUsageSync(ledger, store, USER)
        await sync.load()
        writes = store.write_count
        ledger.reset()
        await sync.drain()
        assert store.write_count == writes

    @pytest.mark.asyncio
    async def test_failed_push_is_retried(self, store):
        ledger = UsageLedger()
        sync = LifetimeUsageSync(ledger, store, USER)
        await sync.load()

        store.fail_writes = True
        ledger.add_call(0, 0, 1, ImageModel.NANO_BANANA)
        await sync.drain()
        assert await store.read_lifetime_usage(USER) is None

        store.fail_writes = False
        assert await sync.push_if_changed()
        assert (await store.read_lifetime_usage(USER)).lifetime_image_count == 1
