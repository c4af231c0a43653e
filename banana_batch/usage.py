"""
Token and cost accounting for generation calls.

Session counters reset on an explicit clear or a model switch. Lifetime cost
and image count only ever grow; they are the only values shared with the
remote store, where the larger value wins on merge.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from .models import LifetimeUsage
from .pricing import ImageModel, call_cost, get_pricing

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CostBreakdown:
    """Read-only cost projection of the current session."""

    input_cost: float
    output_cost: float
    total_cost: float
    lifetime_cost: float


@dataclass
class UsageLedger:
    """Accumulates token counts and cost per generation call."""

    input_tokens: int = 0
    output_text_tokens: int = 0
    output_image_tokens: int = 0
    total_tokens: int = 0
    image_count: int = 0
    session_cost: float = 0.0
    lifetime_cost: float = 0.0
    lifetime_image_count: int = 0
    _observers: list = field(default_factory=list, repr=False, compare=False)

    def subscribe(self, observer: Callable[["UsageLedger"], None]) -> None:
        """Register a callback invoked after every mutation."""
        self._observers.append(observer)

    def _notify(self) -> None:
        for observer in list(self._observers):
            observer(self)

    def add_call(
        self,
        input_tokens: int,
        output_text_tokens: int,
        output_image_tokens: int,
        model: Union[str, ImageModel],
    ) -> float:
        """Record one generation call and return its cost in USD."""
        pricing = get_pricing(model)

        self.input_tokens += input_tokens
        self.output_text_tokens += output_text_tokens
        self.output_image_tokens += output_image_tokens
        self.total_tokens += input_tokens + output_text_tokens + output_image_tokens
        self.image_count += 1

        cost = call_cost(pricing, input_tokens, output_text_tokens, output_image_tokens)
        self.session_cost += cost
        self.lifetime_cost += cost
        self.lifetime_image_count += 1

        self._notify()
        return cost

    def reset(self) -> None:
        """Zero the session counters; lifetime values are kept."""
        self.input_tokens = 0
        self.output_text_tokens = 0
        self.output_image_tokens = 0
        self.total_tokens = 0
        self.image_count = 0
        self.session_cost = 0.0
        self._notify()

    def cost_breakdown(self, model: Union[str, ImageModel]) -> CostBreakdown:
        """Price the session counters with the given model.

        Counters accumulated under a previously selected model are priced with
        this model's rates; per-model history is not tracked.
        """
        pricing = get_pricing(model)
        return CostBreakdown(
            input_cost=self.input_tokens * pricing.input,
            output_cost=(
                self.output_text_tokens * pricing.output_text
                + self.output_image_tokens * pricing.output_image
                + self.image_count * pricing.output_image_flat
            ),
            total_cost=self.session_cost,
            lifetime_cost=self.lifetime_cost,
        )

    @property
    def lifetime(self) -> LifetimeUsage:
        return LifetimeUsage(
            lifetime_cost=self.lifetime_cost,
            lifetime_image_count=self.lifetime_image_count,
        )

    def merge_remote(self, remote: Optional[LifetimeUsage]) -> bool:
        """Adopt remote lifetime values that are strictly larger than ours.

        Values are never summed, so the same usage seen from two devices is
        not double counted. Returns True if anything changed.
        """
        if remote is None:
            return False

        changed = False
        if remote.lifetime_cost > self.lifetime_cost:
            self.lifetime_cost = remote.lifetime_cost
            changed = True
        if remote.lifetime_image_count > self.lifetime_image_count:
            self.lifetime_image_count = remote.lifetime_image_count
            changed = True

        if changed:
            logger.info(
                "Adopted remote lifetime usage: $%.4f, %d images",
                self.lifetime_cost,
                self.lifetime_image_count,
            )
            self._notify()
        return changed

    def to_snapshot(self) -> dict:
        return {
            "total": self.total_tokens,
            "input": self.input_tokens,
            "output_image": self.output_image_tokens,
            "output_text": self.output_text_tokens,
            "images": self.image_count,
            "total_cost": self.session_cost,
            "historic_cost": self.lifetime_cost,
            "historic_images": self.lifetime_image_count,
        }

    @classmethod
    def from_snapshot(cls, data: Optional[dict]) -> "UsageLedger":
        data = data or {}
        return cls(
            total_tokens=data.get("total", 0),
            input_tokens=data.get("input", 0),
            output_image_tokens=data.get("output_image", 0),
            output_text_tokens=data.get("output_text", 0),
            image_count=data.get("images", 0),
            session_cost=data.get("total_cost", 0.0),
            lifetime_cost=data.get("historic_cost", 0.0),
            lifetime_image_count=data.get("historic_images", 0),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_snapshot())

    @classmethod
    def from_json(cls, text: Optional[str]) -> "UsageLedger":
        """Restore from a stored snapshot; unreadable data yields an empty ledger."""
        if not text:
            return cls()
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse saved token usage: %s", e)
            return cls()
        if not isinstance(data, dict):
            logger.error("Saved token usage is not an object, ignoring it")
            return cls()
        return cls.from_snapshot(data)
