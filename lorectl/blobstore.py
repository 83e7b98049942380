"""
Blob Store — folder-scoped text documents addressed by path

The core only needs five operations: read, create, modify, list, exists.
Paths are POSIX-style and relative to the store root
(e.g. "characters/lan-m5x7k/index.json").

Error contract:
    read / modify on a missing path  -> FileNotFoundError
    create on an existing path       -> FileExistsError
    list on a missing folder         -> []
"""

from __future__ import annotations

import threading
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Protocol


def normalize_path(path: str) -> str:
    """Normalize a store path: forward slashes, no leading/trailing slash, no '..'."""
    parts = [p for p in str(path).replace("\\", "/").split("/") if p not in ("", ".")]
    if any(p == ".." for p in parts):
        raise ValueError(f"Path traversal rejected: {path!r}")
    return "/".join(parts)


class BlobStore(Protocol):
    """Minimal document store consumed by the index and lorebook layers."""

    def read(self, path: str) -> str: ...

    def create(self, path: str, text: str) -> None: ...

    def modify(self, path: str, text: str) -> None: ...

    def list(self, folder: str) -> List[str]: ...

    def exists(self, path: str) -> bool: ...


# ---------------------------------------------------------------------------
# Filesystem backend
# ---------------------------------------------------------------------------

class FolderBlobStore:
    """
    Blob store backed by a directory tree.

    create() uses exclusive-create mode, so a concurrent writer that got
    there first surfaces as FileExistsError.
    """

    def __init__(self, root: str):
        """Open (and create if needed) the store root directory."""
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        return self.root / PurePosixPath(normalize_path(path))

    def read(self, path: str) -> str:
        """Read a document as UTF-8 text."""
        return self._resolve(path).read_text(encoding="utf-8")

    def create(self, path: str, text: str) -> None:
        """Create a new document; parent folders are created on demand."""
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "x", encoding="utf-8") as f:
            f.write(text)

    def modify(self, path: str, text: str) -> None:
        """Overwrite an existing document."""
        target = self._resolve(path)
        if not target.is_file():
            raise FileNotFoundError(f"No such document: {path}")
        target.write_text(text, encoding="utf-8")

    def list(self, folder: str) -> List[str]:
        """Paths of the documents directly inside folder (sorted)."""
        base = self._resolve(folder)
        if not base.is_dir():
            return []
        prefix = normalize_path(folder)
        out = []
        for child in sorted(base.iterdir()):
            if child.is_file():
                out.append(f"{prefix}/{child.name}" if prefix else child.name)
        return out

    def list_folders(self, folder: str) -> List[str]:
        """Paths of the sub-folders directly inside folder (sorted)."""
        base = self._resolve(folder)
        if not base.is_dir():
            return []
        prefix = normalize_path(folder)
        return [
            f"{prefix}/{child.name}" if prefix else child.name
            for child in sorted(base.iterdir())
            if child.is_dir()
        ]

    def exists(self, path: str) -> bool:
        """Return True if a document exists at path."""
        return self._resolve(path).is_file()


# ---------------------------------------------------------------------------
# In-process backend
# ---------------------------------------------------------------------------

class MemoryBlobStore:
    """Dict-backed blob store (ephemeral; tests and embedding hosts)."""

    def __init__(self, documents: Optional[Dict[str, str]] = None):
        """Initialize with optional seed documents."""
        self._docs: Dict[str, str] = {}
        self._lock = threading.Lock()
        self.reads = 0
        for path, text in (documents or {}).items():
            self._docs[normalize_path(path)] = text

    def read(self, path: str) -> str:
        """Read a document."""
        key = normalize_path(path)
        with self._lock:
            self.reads += 1
            if key not in self._docs:
                raise FileNotFoundError(f"No such document: {path}")
            return self._docs[key]

    def create(self, path: str, text: str) -> None:
        """Create a new document."""
        key = normalize_path(path)
        with self._lock:
            if key in self._docs:
                raise FileExistsError(f"Document exists: {path}")
            self._docs[key] = text

    def modify(self, path: str, text: str) -> None:
        """Overwrite an existing document."""
        key = normalize_path(path)
        with self._lock:
            if key not in self._docs:
                raise FileNotFoundError(f"No such document: {path}")
            self._docs[key] = text

    def list(self, folder: str) -> List[str]:
        """Paths of the documents directly inside folder (sorted)."""
        prefix = normalize_path(folder)
        prefix = f"{prefix}/" if prefix else ""
        with self._lock:
            return sorted(
                k for k in self._docs
                if k.startswith(prefix) and "/" not in k[len(prefix):]
            )

    def list_folders(self, folder: str) -> List[str]:
        """Paths of the sub-folders directly inside folder (sorted)."""
        prefix = normalize_path(folder)
        prefix = f"{prefix}/" if prefix else ""
        folders = set()
        with self._lock:
            for k in self._docs:
                if k.startswith(prefix) and "/" in k[len(prefix):]:
                    folders.add(prefix + k[len(prefix):].split("/", 1)[0])
        return sorted(folders)

    def exists(self, path: str) -> bool:
        """Return True if a document exists at path."""
        with self._lock:
            return normalize_path(path) in self._docs
