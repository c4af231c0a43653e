"""
Error taxonomy for Banana Batch.
"""

from typing import Optional


class BananaBatchError(Exception):
    """Base exception for Banana Batch errors."""
    pass


class UserInputError(BananaBatchError):
    """The user has not supplied what a batch needs."""
    pass


class NoEnabledPromptsError(UserInputError):
    """No prompt is enabled for the next batch."""

    def __init__(self, message: str = "No prompts selected."):
        super().__init__(message)


class NoImagesSelectedError(UserInputError):
    """No reference image was selected."""

    def __init__(self, message: str = "No files selected."):
        super().__init__(message)


class CredentialError(BananaBatchError):
    """Missing or unusable API credential."""
    pass


class MissingCredentialError(CredentialError):
    """No verified credential is available."""

    def __init__(self, message: str = "API Key not configured."):
        super().__init__(message)


class GenerationError(BananaBatchError):
    """A single generation call failed."""
    pass


class InvalidCredentialError(CredentialError, GenerationError):
    """The generation API rejected the credential (invalid or expired)."""
    pass


class RemoteGenerationError(GenerationError):
    """The generation API returned an error unrelated to credentials."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class NoImageInResponseError(GenerationError):
    """The generation API answered without any image data."""

    def __init__(self, message: str = "No image data found in response"):
        super().__init__(message)


class PersistenceError(BananaBatchError):
    """A local or remote store write (or read) failed."""
    pass


class ConfigError(BananaBatchError):
    """Configuration text could not be parsed or failed validation."""

    def __init__(self, message: str, issues: Optional[list[str]] = None):
        super().__init__(message)
        self.issues = issues or []


class AccessDeniedError(BananaBatchError):
    """The signed-in user is not on the access allow-list."""
    pass
