"""
Remote document store holding each user's prompt list and lifetime usage.

The store is treated as an authenticated key-value store keyed by user id.
Every prompt write carries a sync marker (origin client id + revision) so
that a client can recognise its own writes when they come back as change
notifications.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .errors import PersistenceError
from .models import LifetimeUsage, PromptListState

logger = logging.getLogger(__name__)

SYNC_KEY = "_sync"
ACCESS_FILE = "access.json"


@dataclass
class PromptDocument:
    """Prompt list as stored remotely, plus the marker of the write that produced it."""

    state: PromptListState = field(default_factory=PromptListState)
    origin: Optional[str] = None
    revision: Optional[int] = None

    @property
    def marked(self) -> bool:
        return self.origin is not None and self.revision is not None

    def to_dict(self) -> dict:
        data = self.state.to_dict()
        if self.marked:
            data[SYNC_KEY] = {"origin": self.origin, "revision": self.revision}
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PromptDocument":
        marker = data.get(SYNC_KEY) or {}
        return cls(
            state=PromptListState.from_dict(data),
            origin=marker.get("origin"),
            revision=marker.get("revision"),
        )


DocumentListener = Callable[[PromptDocument], None]


class RemoteDocumentStore(ABC):
    """Async document store interface.

    Reads return None when the document does not exist. Failed writes raise
    PersistenceError.
    """

    def __init__(self):
        self._listeners: dict[str, list[DocumentListener]] = {}

    def subscribe(self, user_id: str, listener: DocumentListener) -> Callable[[], None]:
        """Be told about every prompt document write for a user. Returns an unsubscribe function."""
        self._listeners.setdefault(user_id, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(user_id, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def _publish(self, user_id: str, document: PromptDocument) -> None:
        for listener in list(self._listeners.get(user_id, [])):
            listener(document)

    @abstractmethod
    async def read_prompt_document(self, user_id: str) -> Optional[PromptDocument]:
        pass

    @abstractmethod
    async def write_prompt_document(self, user_id: str, document: PromptDocument) -> None:
        pass

    @abstractmethod
    async def read_lifetime_usage(self, user_id: str) -> Optional[LifetimeUsage]:
        pass

    @abstractmethod
    async def write_lifetime_usage(self, user_id: str, usage: LifetimeUsage) -> None:
        pass

    @abstractmethod
    async def read_access_list(self) -> list[str]:
        pass


def _new_user_document() -> dict:
    return {
        "firstname": "",
        "lastname": "",
        "prompts": [],
        "historic_cost": 0,
        "historic_images": 0,
    }


class MemoryDocumentStore(RemoteDocumentStore):
    """Store kept in a dict; handy for tests and dry runs."""

    def __init__(self, allowed_emails: Optional[list[str]] = None):
        super().__init__()
        self.documents: dict[str, dict] = {}
        self.allowed_emails = list(allowed_emails or [])
        self.fail_writes = False
        self.write_count = 0

    def _check_writable(self) -> None:
        if self.fail_writes:
            raise PersistenceError("Remote store unavailable")

    async def read_prompt_document(self, user_id: str) -> Optional[PromptDocument]:
        data = self.documents.get(user_id)
        if data is None:
            return None
        return PromptDocument.from_dict(data)

    async def write_prompt_document(self, user_id: str, document: PromptDocument) -> None:
        self._check_writable()
        data = self.documents.setdefault(user_id, _new_user_document())
        data.update(json.loads(json.dumps(document.to_dict())))
        if not document.marked:
            data.pop(SYNC_KEY, None)
        self.write_count += 1
        self._publish(user_id, PromptDocument.from_dict(data))

    async def read_lifetime_usage(self, user_id: str) -> Optional[LifetimeUsage]:
        data = self.documents.get(user_id)
        if data is None:
            return None
        return LifetimeUsage.from_dict(data)

    async def write_lifetime_usage(self, user_id: str, usage: LifetimeUsage) -> None:
        self._check_writable()
        self.documents.setdefault(user_id, _new_user_document()).update(usage.to_dict())
        self.write_count += 1

    async def read_access_list(self) -> list[str]:
        return list(self.allowed_emails)


class FileDocumentStore(RemoteDocumentStore):
    """One JSON document per user under a directory.

    Layout:
        <root>/access.json           {"allowedEmails": [...]}
        <root>/users/<user>.json     prompts, prompt_before/after, historic_*
    """

    USERS_DIR = "users"

    def __init__(self, root: Path):
        super().__init__()
        self.root = Path(root)

    @property
    def users_dir(self) -> Path:
        return self.root / self.USERS_DIR

    @property
    def access_path(self) -> Path:
        return self.root / ACCESS_FILE

    def user_path(self, user_id: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9@._-]", "_", user_id)
        return self.users_dir / f"{safe}.json"

    def _read(self, path: Path) -> Optional[dict]:
        if not path.exists():
            return None
        try:
            with open(path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"Document {path} is not a JSON object")
        return data

    def _update(self, user_id: str, changes: dict, remove: tuple = ()) -> dict:
        path = self.user_path(user_id)
        data = self._read(path) or _new_user_document()
        data.update(changes)
        for key in remove:
            data.pop(key, None)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2)
            tmp_path.replace(path)
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {e}") from e
        return data

    async def read_prompt_document(self, user_id: str) -> Optional[PromptDocument]:
        data = self._read(self.user_path(user_id))
        if data is None:
            return None
        return PromptDocument.from_dict(data)

    async def write_prompt_document(self, user_id: str, document: PromptDocument) -> None:
        stale = () if document.marked else (SYNC_KEY,)
        data = self._update(user_id, document.to_dict(), remove=stale)
        logger.debug("Wrote prompt document for %s", user_id)
        self._publish(user_id, PromptDocument.from_dict(data))

    async def read_lifetime_usage(self, user_id: str) -> Optional[LifetimeUsage]:
        data = self._read(self.user_path(user_id))
        if data is None:
            return None
        return LifetimeUsage.from_dict(data)

    async def write_lifetime_usage(self, user_id: str, usage: LifetimeUsage) -> None:
        self._update(user_id, usage.to_dict())

    async def read_access_list(self) -> list[str]:
        try:
            data = self._read(self.access_path)
        except PersistenceError as e:
            logger.error("Error fetching access list: %s", e)
            return []
        if not data:
            return []
        return list(data.get("allowedEmails", []) or [])

    def write_access_list(self, emails: list[str]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        with open(self.access_path, "w") as f:
            json.dump({"allowedEmails": list(emails)}, f, indent=2)
