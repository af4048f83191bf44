"""Containment check for paths under the managed upload directory.

Every filesystem read, write or delete keyed by user input or stored metadata
goes through ``resolve_managed_path`` first.
"""
import os
from pathlib import Path
from urllib.parse import unquote

from fileshare.exceptions import PathTraversalError


def _normalise(raw: str, decode: bool) -> str:
    if raw is None or not str(raw).strip():
        raise PathTraversalError("empty path")

    text = unquote(str(raw)) if decode else str(raw)
    text = text.replace("\\", "/")
    if "\x00" in text:
        raise PathTraversalError("NUL byte in path")
    return text


def resolve_managed_path(base_dir: str | os.PathLike, raw: str, decode: bool = True) -> Path:
    """Return the absolute path ``raw`` names inside ``base_dir``.

    ``raw`` is percent-decoded exactly once (pass ``decode=False`` for values
    the HTTP layer has already decoded) and backslashes are treated as
    separators before resolution. Symlinks are followed, so a link pointing
    out of the directory fails like a ``..`` escape. The directory itself is
    not a valid target.

    Raises PathTraversalError when the result is not strictly inside
    ``base_dir``.
    """
    text = _normalise(raw, decode)

    try:
        root = Path(base_dir).resolve()
        candidate = (root / text).resolve()
    except (OSError, RuntimeError) as e:
        raise PathTraversalError(f"unresolvable path: {e}") from e

    if not str(candidate).startswith(str(root) + os.sep):
        raise PathTraversalError("path escapes managed directory")
    return candidate


def managed_entry_name(base_dir: str | os.PathLike, raw: str, decode: bool = True) -> str:
    """Lexical path of ``raw`` relative to ``base_dir``, symlinks not followed.

    This is the directory entry a stored path refers to, as opposed to the
    file it may point at. ``raw`` must pass ``resolve_managed_path``.
    """
    resolve_managed_path(base_dir, raw, decode)
    root = Path(base_dir).resolve()
    lexical = os.path.normpath(os.path.join(root, _normalise(raw, decode)))
    return os.path.relpath(lexical, root)
