"""
Banana Batch - run a synced list of prompts against reference images with Gemini.

Prompts are edited locally and autosaved to a per-user document; every batch
is accounted for in tokens and dollars.
"""

from pathlib import Path

# Read version from VERSION file (single source of truth)
_version_file = Path(__file__).parent.parent / "VERSION"
if _version_file.exists():
    __version__ = _version_file.read_text().strip()
else:
    __version__ = "0.1.0"  # Fallback for development

from banana_batch.config import Config
from banana_batch.models import GenerationTask, PromptItem, PromptListState
from banana_batch.orchestrator import BatchOrchestrator
from banana_batch.session import BatchSession
from banana_batch.usage import UsageLedger

__all__ = [
    "__version__",
    "Config",
    "GenerationTask",
    "PromptItem",
    "PromptListState",
    "BatchOrchestrator",
    "BatchSession",
    "UsageLedger",
]
