"""Protocols shared by the streaming driver and the resources built on it."""

from __future__ import annotations

from typing import Any, Awaitable, Protocol, TypeVar

F = TypeVar("F")
F_contra = TypeVar("F_contra", contravariant=True)
R = TypeVar("R")
R_co = TypeVar("R_co", covariant=True)


class Accumulator(Protocol[F_contra, R_co]):
    """Folds fragments, in arrival order, into one result."""

    def feed(self, fragment: F_contra) -> None: ...

    def snapshot(self) -> R_co: ...


class FragmentHandler(Protocol[F_contra]):
    """Push-mode callback. May return an awaitable, which is awaited."""

    def __call__(self, fragment: F_contra) -> Awaitable[Any] | None: ...


class StreamDestination(Protocol):
    """Sink for raw relayed bytes. ``write``/``flush`` may be sync or async."""

    def write(self, data: bytes) -> Any: ...
