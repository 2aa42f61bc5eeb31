"""Streaming client for generative AI HTTP APIs."""

from aistream.core.client import APIClient
from aistream.core.config import ClientSettings
from aistream.core.errors import (
    APIError,
    ErrorKind,
    JobCancellationError,
    StreamDecodeError,
    classify,
)
from aistream.llm.chat import ChatRequest
from aistream.llm.runs import RunRequest
from aistream.llm.types import ChatChunk, ChatResponse, Message, Role, StreamEnd
from aistream.streaming.cancellation import CancellationToken

__version__ = "0.1.0"

__all__ = [
    "APIClient",
    "APIError",
    "CancellationToken",
    "ChatChunk",
    "ChatRequest",
    "ChatResponse",
    "ClientSettings",
    "ErrorKind",
    "JobCancellationError",
    "Message",
    "Role",
    "RunRequest",
    "StreamDecodeError",
    "StreamEnd",
    "classify",
]
