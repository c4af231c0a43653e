"""
Data models for Banana Batch.
"""

import base64
import mimetypes
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


@dataclass
class PromptItem:
    """A single user-authored prompt.

    Identity is positional: names may be blank or duplicated while editing.
    """

    name: str = ""
    text: str = ""
    enabled: bool = False
    skip_surrounding_text: bool = False

    # Editable fields, keyed by their attribute names
    FIELDS = ("name", "text", "enabled", "skip_surrounding_text")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "prompt": self.text,
            "enabled": self.enabled,
            "skip_beforeafter_prompt": self.skip_surrounding_text,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PromptItem":
        return cls(
            name=data.get("name", "") or "",
            text=data.get("prompt", "") or "",
            enabled=bool(data.get("enabled", False)),
            skip_surrounding_text=bool(data.get("skip_beforeafter_prompt", False)),
        )


@dataclass
class PromptListState:
    """The ordered prompt list plus the text wrapped around every prompt."""

    items: list[PromptItem] = field(default_factory=list)
    before_text: str = ""
    after_text: str = ""

    def to_dict(self) -> dict:
        return {
            "prompts": [item.to_dict() for item in self.items],
            "prompt_before": self.before_text,
            "prompt_after": self.after_text,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PromptListState":
        return cls(
            items=[PromptItem.from_dict(p) for p in data.get("prompts", []) or []],
            before_text=data.get("prompt_before", "") or "",
            after_text=data.get("prompt_after", "") or "",
        )

    def enabled_items(self) -> list[PromptItem]:
        """Items flagged for the next batch, in list order (unnamed items are skipped)."""
        return [item for item in self.items if item.enabled and item.name.strip()]

    def compose(self, item: PromptItem) -> str:
        """Wrap an item's text with the before/after text unless the item opts out."""
        if item.skip_surrounding_text:
            return item.text
        segments = [self.before_text, item.text, self.after_text]
        return "\n".join(s for s in segments if s).strip()


class TaskStatus(Enum):
    """Lifecycle of a generation task."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


# Allowed status transitions (monotonic)
_TRANSITIONS = {
    TaskStatus.PENDING: (TaskStatus.PROCESSING,),
    TaskStatus.PROCESSING: (TaskStatus.COMPLETED, TaskStatus.FAILED),
    TaskStatus.COMPLETED: (),
    TaskStatus.FAILED: (),
}


@dataclass
class ReferenceImage:
    """An input image sent along with every prompt of a batch."""

    name: str
    data: bytes
    mime_type: str = "image/png"

    @classmethod
    def from_path(cls, path: Path) -> "ReferenceImage":
        """Load an image file, guessing its MIME type from the extension."""
        path = Path(path)
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            data=path.read_bytes(),
            mime_type=mime_type or "application/octet-stream",
        )

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def stem(self) -> str:
        return Path(self.name).stem


@dataclass
class TokenUsage:
    """Token counts reported by one generation call."""

    input_tokens: int = 0
    output_text_tokens: int = 0
    output_image_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> dict:
        return {
            "input_tokens": self.input_tokens,
            "output_text_tokens": self.output_text_tokens,
            "output_image_tokens": self.output_image_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TokenUsage":
        return cls(
            input_tokens=data.get("input_tokens", 0),
            output_text_tokens=data.get("output_text_tokens", 0),
            output_image_tokens=data.get("output_image_tokens", 0),
            total_tokens=data.get("total_tokens", 0),
        )

    @property
    def output_tokens(self) -> int:
        return self.output_text_tokens + self.output_image_tokens


@dataclass
class GenerationOutput:
    """What a successful generation call returns."""

    image_url: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class LifetimeUsage:
    """Cumulative cost and image count across sessions and devices."""

    lifetime_cost: float = 0.0
    lifetime_image_count: int = 0

    def to_dict(self) -> dict:
        return {
            "historic_cost": self.lifetime_cost,
            "historic_images": self.lifetime_image_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LifetimeUsage":
        return cls(
            lifetime_cost=data.get("historic_cost", 0.0) or 0.0,
            lifetime_image_count=data.get("historic_images", 0) or 0,
        )


@dataclass
class GenerationTask:
    """One generation call within a batch."""

    id: str
    batch_id: str
    prompt_name: str
    composed_prompt_text: str
    input_images: list[ReferenceImage] = field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    result_image_url: Optional[str] = None
    error_message: Optional[str] = None
    usage: Optional[TokenUsage] = None

    @classmethod
    def create(
        cls,
        batch_id: str,
        prompt_name: str,
        composed_prompt_text: str,
        input_images: list[ReferenceImage],
    ) -> "GenerationTask":
        return cls(
            id=f"{prompt_name}-{uuid.uuid4().hex[:8]}",
            batch_id=batch_id,
            prompt_name=prompt_name,
            composed_prompt_text=composed_prompt_text,
            input_images=list(input_images),
        )

    def _transition(self, new_status: TaskStatus) -> None:
        if new_status not in _TRANSITIONS[self.status]:
            raise ValueError(
                f"Task {self.id}: illegal transition {self.status.value} -> {new_status.value}"
            )
        self.status = new_status

    def start(self) -> None:
        self._transition(TaskStatus.PROCESSING)

    def complete(self, image_url: str, usage: Optional[TokenUsage] = None) -> None:
        self._transition(TaskStatus.COMPLETED)
        self.result_image_url = image_url
        self.usage = usage

    def fail(self, message: str) -> None:
        self._transition(TaskStatus.FAILED)
        self.error_message = message

    @property
    def original_file_name(self) -> str:
        return self.input_images[0].name if self.input_images else ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "prompt_name": self.prompt_name,
            "prompt_text": self.composed_prompt_text,
            "files": [image.name for image in self.input_images],
            "status": self.status.value,
            "image_url": self.result_image_url,
            "error": self.error_message,
            "usage": self.usage.to_dict() if self.usage else None,
        }
