from __future__ import annotations
import os
from typing import Any, Optional

from tails.tails_datatypes import TailsRuntimeError, IO_ERROR, ENCODING_ERROR
from tails.tails_serialize import serialize
# NOTE: the printer is imported lazily in write_file to keep this module a leaf.

STRUCTURED_EXTENSIONS = {".json": "json", ".yaml": "yaml", ".yml": "yaml"}


def resolve_path(path: str, base_dir: Optional[str]) -> str:
    """Expands `~` and resolves relative paths against the script directory (or CWD)."""
    if not isinstance(path, str) or not path:
        raise TailsRuntimeError("File path must be a non-empty string", IO_ERROR)
    if path.startswith("~"):
        return os.path.expanduser(path)
    if os.path.isabs(path):
        return os.path.normpath(path)
    # Explicit working-directory paths ignore the script directory
    if path.startswith("./"):
        return os.path.normpath(os.path.join(os.getcwd(), path[2:]))
    base = base_dir or os.getcwd()
    return os.path.normpath(os.path.join(base, path))


def read_file(path: str, *, base_dir: Optional[str] = None, encoding: str = "utf-8") -> str:
    full = resolve_path(path, base_dir)
    if os.path.isdir(full):
        raise TailsRuntimeError(f"Cannot read '{path}': is a directory", IO_ERROR)
    try:
        with open(full, "r", encoding=encoding) as f:
            return f.read()
    except FileNotFoundError:
        raise TailsRuntimeError(f"File not found: {path}", IO_ERROR)
    except UnicodeDecodeError as e:
        raise TailsRuntimeError(f"Cannot decode '{path}' as {encoding}: {e.reason}", ENCODING_ERROR)
    except OSError as e:
        raise TailsRuntimeError(f"Cannot read '{path}': {e.strerror}", IO_ERROR)


def write_file(path: str, data: Any, *, base_dir: Optional[str] = None, append: bool = False) -> str:
    """Writes data and returns the resolved path.

    Strings are written verbatim. Other values are serialized by extension
    (.json/.yaml/.yml) or written in display form.
    """
    full = resolve_path(path, base_dir)
    if isinstance(data, str):
        text = data
    else:
        ext = os.path.splitext(full)[1].lower()
        fmt = STRUCTURED_EXTENSIONS.get(ext)
        if fmt is not None:
            text = serialize(data, fmt=fmt, pretty=True)
        else:
            from tails.tails_printer import to_display
            text = to_display(data)
    try:
        os.makedirs(os.path.dirname(full) or ".", exist_ok=True)
        with open(full, "a" if append else "w", encoding="utf-8") as f:
            f.write(text)
    except OSError as e:
        raise TailsRuntimeError(f"Cannot write '{path}': {e.strerror}", IO_ERROR)
    return full


def delete_file(path: str, *, base_dir: Optional[str] = None) -> bool:
    full = resolve_path(path, base_dir)
    if os.path.isdir(full):
        # Directories are never removed
        raise TailsRuntimeError(f"Cannot delete '{path}': is a directory", IO_ERROR)
    if not os.path.exists(full):
        return False
    try:
        os.remove(full)
    except OSError as e:
        raise TailsRuntimeError(f"Cannot delete '{path}': {e.strerror}", IO_ERROR)
    return True


def file_exists(path: str, *, base_dir: Optional[str] = None) -> bool:
    return os.path.isfile(resolve_path(path, base_dir))


def dir_exists(path: str, *, base_dir: Optional[str] = None) -> bool:
    return os.path.isdir(resolve_path(path, base_dir))
