"""Input file handles: a name, a size and the full content in memory."""

import os
from pathlib import Path
from typing import List, Union


class FileHandle:
    """An opaque input file."""

    name: str

    @property
    def size(self) -> int:
        raise NotImplementedError

    def read(self) -> bytes:
        raise NotImplementedError


class MemoryFile(FileHandle):
    def __init__(self, name: str, data: bytes):
        self.name = name
        self._data = data

    @property
    def size(self) -> int:
        return len(self._data)

    def read(self) -> bytes:
        return self._data

    def __repr__(self) -> str:
        return f"MemoryFile({self.name!r}, {self.size} bytes)"


class PathFile(FileHandle):
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.name = self.path.name

    @property
    def size(self) -> int:
        return self.path.stat().st_size

    def read(self) -> bytes:
        return self.path.read_bytes()

    def __repr__(self) -> str:
        return f"PathFile({str(self.path)!r})"


def collect_eml_files(input_folder: Union[str, Path]) -> List[PathFile]:
    """
    EML files in a folder, oldest first.

    Args:
        input_folder: Folder to scan (not recursive)

    Returns:
        List of PathFile handles sorted by modification time
    """
    folder = Path(input_folder)
    eml_files = [
        entry for entry in folder.iterdir()
        if entry.is_file() and entry.name.lower().endswith(".eml")
    ]
    eml_files.sort(key=lambda p: (os.path.getmtime(p), p.name))
    return [PathFile(p) for p in eml_files]
