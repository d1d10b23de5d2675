"""
Note source collaborator and path helpers.

The index never touches the vault directly: it lists and reads notes through
a NoteSource. Paths are normalized once here and used as record keys
everywhere else.
"""

import hashlib
import os
import unicodedata
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional

NOTE_SUFFIXES = (".md",)


def normalize_note_path(path: str) -> str:
    """
    Normalize a vault-relative note path.

    Uses forward slashes, NFC unicode, no leading/trailing separators and no
    empty or "." segments. "folder//Note.md", "/folder/Note.md" and
    "./folder/Note.md" all normalize to "folder/Note.md".
    """
    if path is None:
        raise ValueError("note path is required")

    text = unicodedata.normalize("NFC", str(path)).replace("\\", "/")
    parts = [part for part in text.split("/") if part not in ("", ".")]
    if not parts:
        raise ValueError(f"invalid note path: {path!r}")
    if ".." in parts:
        raise ValueError(f"note path escapes the vault: {path!r}")
    return "/".join(parts)


def content_hash(text: str) -> str:
    """SHA-256 hex digest of note text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def normalize_exclusions(exclusions: Iterable[str]) -> List[str]:
    """Normalize exclusion entries to "/segment/segment" form, dropping blanks."""
    normalized = []
    for entry in exclusions or []:
        if entry is None:
            continue
        try:
            normalized.append("/" + normalize_note_path(entry.strip()))
        except ValueError:
            continue
    return normalized


def is_excluded(path: str, exclusions: Iterable[str]) -> bool:
    """
    Check a note path against exclusion prefixes.

    Matching is by whole path segment: "/Archive" excludes "Archive" and
    everything under "Archive/", but not "Archive2024.md".
    """
    candidate = "/" + normalize_note_path(path)
    for prefix in normalize_exclusions(exclusions):
        if candidate == prefix or candidate.startswith(prefix + "/"):
            return True
    return False


class NoteSource(ABC):
    """Host-provided access to notes."""

    @abstractmethod
    def list_notes(self) -> List[str]:
        """Return normalized paths of every note in the vault."""
        pass

    @abstractmethod
    def read_note(self, path: str) -> str:
        """Return the current text of a note."""
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        pass


class VaultNoteSource(NoteSource):
    """Markdown notes beneath a vault directory.

    Dot-directories (".obsidian", ".git", the embeddings directory) are skipped.
    """

    def __init__(self, root: str, suffixes: tuple = NOTE_SUFFIXES):
        self.root = Path(root)
        self.suffixes = tuple(s.lower() for s in suffixes)

    def _resolve(self, path: str) -> Path:
        return self.root.joinpath(*normalize_note_path(path).split("/"))

    def list_notes(self) -> List[str]:
        if not self.root.is_dir():
            return []

        notes = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for filename in sorted(filenames):
                if filename.startswith(".") or not filename.lower().endswith(self.suffixes):
                    continue
                relative = Path(dirpath, filename).relative_to(self.root).as_posix()
                notes.append(normalize_note_path(relative))
        return notes

    def read_note(self, path: str) -> str:
        with open(self._resolve(path), "r", encoding="utf-8") as f:
            return f.read()

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()


class InMemoryNoteSource(NoteSource):
    """Dict-backed note source for tests and scripted hosts."""

    def __init__(self, notes: Optional[Dict[str, str]] = None):
        self.notes: Dict[str, str] = {}
        for path, text in (notes or {}).items():
            self.write_note(path, text)

    def write_note(self, path: str, text: str) -> str:
        key = normalize_note_path(path)
        self.notes[key] = text
        return key

    def delete_note(self, path: str) -> None:
        self.notes.pop(normalize_note_path(path), None)

    def list_notes(self) -> List[str]:
        return sorted(self.notes)

    def read_note(self, path: str) -> str:
        key = normalize_note_path(path)
        if key not in self.notes:
            raise FileNotFoundError(key)
        return self.notes[key]

    def exists(self, path: str) -> bool:
        return normalize_note_path(path) in self.notes
