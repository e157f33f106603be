"""Filesystem access rooted at a configurable directory.

Every engine reads ``/proc`` and ``/sys`` through a ``HostFS`` so the same
code runs against the live host or a fabricated tree in tests.
"""

import os
from pathlib import Path


class HostFS:
    """Read-only view of OS paths resolved under ``root``."""

    def __init__(self, root: str | os.PathLike[str] = "/") -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path(self, path: str | os.PathLike[str]) -> Path:
        """Map an absolute OS path onto this filesystem's root."""
        return self._root / str(path).lstrip("/")

    def exists(self, path: str) -> bool:
        """Return False for missing paths and for paths that cannot be searched."""
        try:
            return self.path(path).exists()
        except OSError:
            return False

    def is_dir(self, path: str) -> bool:
        try:
            return self.path(path).is_dir()
        except OSError:
            return False

    def is_file(self, path: str) -> bool:
        try:
            return self.path(path).is_file()
        except OSError:
            return False

    def readable(self, path: str) -> bool:
        return os.access(self.path(path), os.R_OK)

    def list_dir(self, path: str) -> list[str]:
        """Return the sorted entry names of a directory, or [] if unreadable."""
        try:
            return sorted(os.listdir(self.path(path)))
        except OSError:
            return []

    def read_text(self, path: str) -> str:
        """Read a whole file. Raises OSError if it cannot be read."""
        return self.path(path).read_text(encoding="utf-8", errors="replace")

    def read_or(self, path: str, fallback: str = "") -> str:
        """
        Read a file and strip it, returning ``fallback`` when the file is
        missing, unreadable or empty.
        """
        try:
            text = self.read_text(path).strip()
        except OSError:
            return fallback
        return text or fallback

    def canonical(self, path: str) -> str | None:
        """
        Resolve symlinks and return the OS path relative to the root.

        Returns None when the path does not exist or escapes the root.
        """
        try:
            resolved = self.path(path).resolve(strict=True)
            relative = resolved.relative_to(self._root.resolve())
        except (OSError, ValueError, RuntimeError):
            return None
        return "/" + relative.as_posix() if relative.parts else "/"
