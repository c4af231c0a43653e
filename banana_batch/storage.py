"""
Durable local key-value storage and the preferences kept in it.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .errors import PersistenceError
from .pricing import DEFAULT_MODEL, ImageModel, UnknownModelError
from .usage import UsageLedger

logger = logging.getLogger(__name__)


KEY_PREFIX = "banana_batch_"
KEY_ASPECT_RATIO = KEY_PREFIX + "aspect_ratio"
KEY_IMAGE_SIZE = KEY_PREFIX + "image_size"
KEY_MODEL = KEY_PREFIX + "model"
KEY_TEMPERATURE = KEY_PREFIX + "temperature"
KEY_TOKEN_USAGE = KEY_PREFIX + "token_usage"
KEY_TERMINAL_COLLAPSED = KEY_PREFIX + "terminal_collapsed"


class KeyValueStore(ABC):
    """Synchronous string key-value store."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass


class MemoryStore(KeyValueStore):
    """In-process store, lost on exit."""

    def __init__(self, initial: Optional[dict] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStore(KeyValueStore):
    """Store backed by a single JSON object on disk, rewritten on every set."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data: dict[str, str] = self._read()

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable local store %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            with open(tmp_path, "w") as f:
                json.dump(self._data, f, indent=2)
            tmp_path.replace(self.path)
        except OSError as e:
            raise PersistenceError(f"Failed to write {self.path}: {e}") from e


class Preferences:
    """Typed access to the locally persisted UI preferences."""

    DEFAULT_ASPECT_RATIO = "4:5"
    DEFAULT_IMAGE_SIZE = "2K"
    DEFAULT_TEMPERATURE = 1.0

    def __init__(
        self,
        store: KeyValueStore,
        aspect_ratio: Optional[str] = None,
        image_size: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ):
        """
        Args:
            store: Backing key-value store
            aspect_ratio, image_size, model, temperature: Fallbacks used while
                nothing is saved (usually the configured defaults)
        """
        self.store = store
        self.default_aspect_ratio = aspect_ratio or self.DEFAULT_ASPECT_RATIO
        self.default_image_size = image_size or self.DEFAULT_IMAGE_SIZE
        self.default_model = ImageModel.from_string(model) if model else DEFAULT_MODEL
        self.default_temperature = self.DEFAULT_TEMPERATURE if temperature is None else temperature

    def _set(self, key: str, value: str) -> None:
        try:
            self.store.set(key, value)
        except PersistenceError as e:
            logger.error("Failed to save preference %s: %s", key, e)

    @property
    def aspect_ratio(self) -> str:
        return self.store.get(KEY_ASPECT_RATIO) or self.default_aspect_ratio

    @aspect_ratio.setter
    def aspect_ratio(self, value: str) -> None:
        self._set(KEY_ASPECT_RATIO, value)

    @property
    def image_size(self) -> str:
        return self.store.get(KEY_IMAGE_SIZE) or self.default_image_size

    @image_size.setter
    def image_size(self, value: str) -> None:
        self._set(KEY_IMAGE_SIZE, value)

    @property
    def model(self) -> ImageModel:
        saved = self.store.get(KEY_MODEL)
        if not saved:
            return self.default_model
        try:
            return ImageModel.from_string(saved)
        except UnknownModelError:
            logger.warning("Saved model %r is no longer supported, using default", saved)
            return self.default_model

    @model.setter
    def model(self, value: ImageModel) -> None:
        self._set(KEY_MODEL, ImageModel.from_string(value).value)

    @property
    def temperature(self) -> float:
        saved = self.store.get(KEY_TEMPERATURE)
        if not saved:
            return self.default_temperature
        try:
            return float(saved)
        except ValueError:
            logger.warning("Saved temperature %r is not a number, using default", saved)
            return self.default_temperature

    @temperature.setter
    def temperature(self, value: float) -> None:
        self._set(KEY_TEMPERATURE, str(float(value)))

    @property
    def terminal_collapsed(self) -> bool:
        return self.store.get(KEY_TERMINAL_COLLAPSED) == "true"

    @terminal_collapsed.setter
    def terminal_collapsed(self, value: bool) -> None:
        self._set(KEY_TERMINAL_COLLAPSED, "true" if value else "false")

    def load_usage(self) -> UsageLedger:
        return UsageLedger.from_json(self.store.get(KEY_TOKEN_USAGE))

    def save_usage(self, ledger: UsageLedger) -> None:
        self._set(KEY_TOKEN_USAGE, ledger.to_json())
