"""Durable authentication state, one location per session identifier.

The transport keeps its key material under the location it was given at
connect time.  The lifecycle controller only ever creates, relocates or
deletes whole locations, always from inside the lifecycle step that owns
the session.
"""

from __future__ import annotations

import logging
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)


class AuthStateStore(ABC):
    @abstractmethod
    def ensure(self, identifier: str) -> str:
        """Create the location for *identifier* if missing and return it."""

    @abstractmethod
    def exists(self, identifier: str) -> bool: ...

    @abstractmethod
    def delete(self, identifier: str) -> None:
        """Remove the location and everything in it; missing is not an error."""

    @abstractmethod
    def move(self, old: str, new: str) -> None:
        """Relocate *old* to *new*, clearing anything already at *new*."""


class FileAuthStateStore(AuthStateStore):
    """Stores each session's credentials in its own directory under *root*."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self._root = Path(root)

    def path_for(self, identifier: str) -> Path:
        path = (self._root / identifier).resolve()
        if path.parent != self._root.resolve():
            raise ValueError(f"invalid auth state key: {identifier!r}")
        return path

    def ensure(self, identifier: str) -> str:
        path = self.path_for(identifier)
        path.mkdir(parents=True, exist_ok=True)
        return str(path)

    def exists(self, identifier: str) -> bool:
        return self.path_for(identifier).exists()

    def delete(self, identifier: str) -> None:
        path = self.path_for(identifier)
        if path.exists():
            shutil.rmtree(path)
            logger.info("Auth state removed for %s", identifier)

    def move(self, old: str, new: str) -> None:
        source = self.path_for(old)
        target = self.path_for(new)
        if source == target or not source.exists():
            return
        if target.exists():
            shutil.rmtree(target)
        os.replace(source, target)
        logger.info("Auth state moved %s → %s", old, new)
