"""Tests for data models."""

import pytest

from banana_batch.models import (
    GenerationTask,
    LifetimeUsage,
    PromptItem,
    PromptListState,
    ReferenceImage,
    TaskStatus,
    TokenUsage,
)


class TestPromptItem:
    def test_to_dict(self):
        item = PromptItem(name="wide", text="wide shot", enabled=True)
        d = item.to_dict()
        assert d["name"] == "wide"
        assert d["prompt"] == "wide shot"
        assert d["enabled"] is True
        assert d["skip_beforeafter_prompt"] is False

    def test_from_dict_defaults(self):
        item = PromptItem.from_dict({"name": "x"})
        assert item.text == ""
        assert item.enabled is False
        assert item.skip_surrounding_text is False

    def test_new_item_is_blank_and_disabled(self):
        item = PromptItem()
        assert item.name == ""
        assert item.enabled is False


class TestPromptListState:
    def test_from_dict(self):
        state = PromptListState.from_dict({
            "prompts": [{"name": "a", "prompt": "one", "enabled": True}],
            "prompt_before": "Edit:",
            "prompt_after": "",
        })
        assert len(state.items) == 1
        assert state.items[0].text == "one"
        assert state.before_text == "Edit:"

    def test_missing_keys_give_empty_state(self):
        state = PromptListState.from_dict({})
        assert state.items == []
        assert state.before_text == ""
        assert state.after_text == ""

    def test_enabled_items_keep_order_and_skip_unnamed(self):
        state = PromptListState(items=[
            PromptItem(name="wide", enabled=True),
            PromptItem(name="off", enabled=False),
            PromptItem(name="  ", enabled=True),
            PromptItem(name="close", enabled=True),
        ])
        assert [i.name for i in state.enabled_items()] == ["wide", "close"]

    def test_compose_wraps_with_before_and_after(self):
        state = PromptListState(before_text="Edit:", after_text="Keep the face.")
        item = PromptItem(name="wide", text="wide shot")
        assert state.compose(item) == "Edit:\nwide shot\nKeep the face."

    def test_compose_skips_empty_segments(self):
        state = PromptListState(before_text="Edit:")
        assert state.compose(PromptItem(text="close up")) == "Edit:\nclose up"

    def test_compose_skip_surrounding_text_uses_raw_text(self):
        state = PromptListState(before_text="Edit:", after_text="after")
        item = PromptItem(text=" raw text ", skip_surrounding_text=True)
        assert state.compose(item) == " raw text "


class TestGenerationTask:
    def _task(self):
        return GenerationTask.create("batch-1", "wide", "Edit:\nwide", [])

    def test_create_is_pending(self):
        task = self._task()
        assert task.status == TaskStatus.PENDING
        assert task.id.startswith("wide-")
        assert task.batch_id == "batch-1"

    def test_complete_lifecycle(self):
        task = self._task()
        task.start()
        task.complete("data:image/png;base64,AA==", TokenUsage(total_tokens=5))
        assert task.status == TaskStatus.COMPLETED
        assert task.status.is_terminal
        assert task.result_image_url.startswith("data:")
        assert task.usage.total_tokens == 5

    def test_fail_records_message(self):
        task = self._task()
        task.start()
        task.fail("boom")
        assert task.status == TaskStatus.FAILED
        assert task.error_message == "boom"

    def test_cannot_complete_pending_task(self):
        with pytest.raises(ValueError):
            self._task().complete("data:,")

    def test_terminal_status_is_final(self):
        task = self._task()
        task.start()
        task.fail("boom")
        with pytest.raises(ValueError):
            task.start()

    def test_original_file_name(self):
        image = ReferenceImage(name="portrait.png", data=b"x")
        task = GenerationTask.create("b", "wide", "t", [image])
        assert task.original_file_name == "portrait.png"
        assert task.to_dict()["files"] == ["portrait.png"]


class TestReferenceImage:
    def test_from_path_guesses_mime_type(self, tmp_path):
        path = tmp_path / "face.jpg"
        path.write_bytes(b"\xff\xd8\xff")
        image = ReferenceImage.from_path(path)
        assert image.name == "face.jpg"
        assert image.mime_type == "image/jpeg"
        assert image.stem == "face"
        assert image.to_base64() == "/9j/"


class TestUsageTypes:
    def test_token_usage_output_tokens(self):
        usage = TokenUsage(input_tokens=10, output_text_tokens=3, output_image_tokens=7, total_tokens=20)
        assert usage.output_tokens == 10
        assert TokenUsage.from_dict(usage.to_dict()) == usage

    def test_lifetime_usage_keys(self):
        usage = LifetimeUsage(lifetime_cost=1.5, lifetime_image_count=3)
        assert usage.to_dict() == {"historic_cost": 1.5, "historic_images": 3}
        assert LifetimeUsage.from_dict({}) == LifetimeUsage()
