"""
Error taxonomy for the chat pipeline.

  ValidationError      bad request, rejected before any upstream call
  UpstreamUnavailable  retrieval/classification failure, recovered locally
  GenerationError      completion failure or timeout, fatal to the request
  PersistenceError     storage failure, logged and never shown to the user
"""

from __future__ import annotations


class MindMendError(Exception):
    """Base class for all MindMend errors."""


class ValidationError(MindMendError):
    """Request or call arguments failed validation."""


class UpstreamUnavailable(MindMendError):
    """A best-effort upstream service (classifier, embeddings, index) failed."""


class EmbeddingError(UpstreamUnavailable):
    """The embedding endpoint failed or returned an unusable vector."""


class GenerationError(MindMendError):
    """The chat completion call failed; carries the raw cause in `detail`."""

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.detail = detail


class PersistenceError(MindMendError):
    """Storing a conversation turn failed."""
