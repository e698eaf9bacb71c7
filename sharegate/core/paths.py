"""
Path containment checks.

Every client- or operator-supplied relative path goes through ``PathGuard``
before the filesystem is touched. Normalization is purely lexical; ``resolve``
then re-checks the real path so symlinks planted inside a sandbox cannot lead
out of it.
"""

import os
import re
from pathlib import Path
from typing import Union

from sharegate.core.errors import Denied, PathEscape

_DRIVE = re.compile(r"^[A-Za-z]:")

# NAME_MAX on common filesystems
MAX_SEGMENT_BYTES = 255


class PathGuard:
    """Stateless sandbox checks shared by shares and uploads."""

    def normalize(self, relative: object) -> str:
        """Collapse a relative path to its canonical posix form.

        Backslashes count as separators, redundant separators and ``.`` are
        dropped and ``..`` pops the previous segment.

        Args:
            relative: Untrusted relative path.

        Returns:
            The normalized path, never empty and never starting with ``/``.

        Raises:
            PathEscape: For empty, absolute or NUL-carrying input, and for any
                path that climbs above its root or collapses onto it.
            Denied: If a segment is longer than the filesystem accepts.
        """
        if not isinstance(relative, str) or not relative:
            raise PathEscape("Empty path")
        if "\x00" in relative:
            raise PathEscape("Path contains a NUL byte")

        candidate = relative.replace("\\", "/")
        if candidate.startswith("/") or _DRIVE.match(candidate):
            raise PathEscape(f"Absolute path rejected: {relative!r}")

        parts = []
        for part in candidate.split("/"):
            if part in ("", "."):
                continue
            if part == "..":
                if not parts:
                    raise PathEscape(f"Path leaves its root: {relative!r}")
                parts.pop()
                continue
            if len(part.encode("utf-8", "surrogatepass")) > MAX_SEGMENT_BYTES:
                raise Denied(f"Path segment too long: {part[:32]!r}...")
            parts.append(part)

        if not parts:
            raise PathEscape(f"Path refers to the root itself: {relative!r}")
        return "/".join(parts)

    def resolve(self, root: Union[str, Path], relative: object) -> Path:
        """Resolve ``relative`` inside ``root``.

        Returns:
            The absolute real path of the target. The target does not need to
            exist, but every existing component is followed and re-checked.

        Raises:
            PathEscape: If the lexical or the real path leaves ``root``.
        """
        normalized = self.normalize(relative)
        real_root = Path(os.path.realpath(root))
        target = Path(os.path.realpath(real_root.joinpath(*normalized.split("/"))))
        if real_root not in target.parents:
            raise PathEscape(f"Path resolves outside its root: {relative!r}")
        return target

    def segment(self, name: object) -> str:
        """Normalize a name that must address a single entry of its root.

        Raises:
            PathEscape: As for ``normalize``.
            Denied: If the name has more than one segment.
        """
        normalized = self.normalize(name)
        if "/" in normalized:
            raise Denied(f"Nested names are not accepted: {name!r}")
        return normalized

    def contains(self, root: Union[str, Path], path: Union[str, Path]) -> bool:
        """Whether the real ``path`` is ``root`` or lies beneath it."""
        real_root = Path(os.path.realpath(root))
        real = Path(os.path.realpath(path))
        return real == real_root or real_root in real.parents


# Stateless, safe to share
path_guard = PathGuard()
