"""ExistingFileTracker — which paths are already known to exist in a sandbox.

Only a heuristic for the apply engine's create-vs-merge choice. One
tracker belongs to one sandbox session and is discarded with it, so a
"file exists" assumption never leaks into an unrelated sandbox.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator


class ExistingFileTracker:
    """A set of project-relative paths, mutated only by successful writes."""

    def __init__(self, paths: Iterable[str] | None = None) -> None:
        self._paths: set[str] = set(paths or ())

    def add(self, path: str) -> None:
        self._paths.add(path)

    def __contains__(self, path: object) -> bool:
        return path in self._paths

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._paths))

    def __len__(self) -> int:
        return len(self._paths)

    def clear(self) -> None:
        self._paths.clear()
