"""
Chat completion backends.
Anything that speaks the OpenAI chat-completions wire format, optionally
wrapped with retry/backoff for transient upstream errors.
"""
from mindmend.backends.base import BaseBackend, BackendResponse
from mindmend.backends.openai_compat import OpenAICompatibleBackend
from mindmend.backends.retry_wrapper import RetryableBackendWrapper

__all__ = [
    "BaseBackend",
    "BackendResponse",
    "OpenAICompatibleBackend",
    "RetryableBackendWrapper",
]
