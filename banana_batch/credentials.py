"""
Credential check used before and during a batch.
"""

import logging
from abc import ABC, abstractmethod

from .config import APIKeys

logger = logging.getLogger(__name__)


class CredentialProvider(ABC):
    """Tells the orchestrator whether a usable API key is available."""

    @abstractmethod
    def has_valid_credential(self) -> bool:
        pass

    @abstractmethod
    def request_credential(self) -> None:
        """Ask the user for a new credential (may be a no-op)."""
        pass


class EnvCredentialProvider(CredentialProvider):
    """Credential taken from configuration or the environment.

    There is no interactive key selection here; once the API rejects the key
    it stays invalid until a new key is configured and the provider is
    re-created.
    """

    def __init__(self, api_keys: APIKeys):
        self.api_keys = api_keys
        self._rejected = False

    @property
    def api_key(self) -> str:
        return self.api_keys.google

    def has_valid_credential(self) -> bool:
        return bool(self.api_keys.google) and not self._rejected

    def mark_rejected(self) -> None:
        self._rejected = True

    def request_credential(self) -> None:
        self.mark_rejected()
        logger.warning(
            "API key might be invalid or expired. Set GEMINI_API_KEY (or GOOGLE_API_KEY) "
            "or update api_keys.google in the config file."
        )


class StaticCredentialProvider(CredentialProvider):
    """Fixed answer; useful for dry runs and tests."""

    def __init__(self, valid: bool = True):
        self.valid = valid
        self.requests = 0

    def has_valid_credential(self) -> bool:
        return self.valid

    def request_credential(self) -> None:
        self.requests += 1
        self.valid = False
