"""Base splitter interface for harvested payloads that bundle several records."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import Any


class BaseSplitter(ABC):
    """Abstract base for all record splitters.

    A splitter turns one harvested payload into an ordered, finite sequence
    of raw record chunks. ``split()`` is a generator: every call starts over
    from the beginning of the payload it is given, and the sequence cannot be
    resumed part-way through.
    """

    def __init__(self, **params: Any) -> None:
        self.params = params

    @abstractmethod
    def split(self, payload: bytes) -> Iterator[bytes]:
        """Yield raw metadata chunks of *payload*, one per logical record."""
