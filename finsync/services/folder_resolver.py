"""Resolve slash-delimited Drive paths to folder IDs with single-flight creation."""

import asyncio
import re
from typing import Optional, Protocol

from finsync.utils.logging import get_logger

logger = get_logger(__name__)

_UNSAFE_SEGMENT_CHARS = re.compile(r"[/\\\x00-\x1f]+")


class FolderStore(Protocol):
    """The folder operations the resolver needs from the destination store."""

    async def find_folder(self, parent_id: str, name: str) -> Optional[str]:
        ...

    async def create_folder(self, parent_id: str, name: str) -> str:
        ...


def sanitize_segment(name: str) -> str:
    """Make a vendor or month name safe to use as a single path segment."""
    cleaned = _UNSAFE_SEGMENT_CHARS.sub("-", name or "")
    cleaned = " ".join(cleaned.split()).strip(" .-")
    return cleaned or "Unknown"


def split_path(folder_path: str) -> list[str]:
    """Split ``A/B/C`` into non-empty, whitespace-trimmed segments."""
    return [part.strip() for part in folder_path.split("/") if part.strip()]


class FolderPathResolver:
    """
    Turns ``Zano/Acme/March 2026`` into a Drive folder ID, creating folders as needed.

    Search-then-create is not atomic against Drive, so concurrent callers
    resolving the same ``(parent_id, name)`` segment share one in-flight task
    instead of each creating their own folder. Unrelated segments resolve in
    parallel.

    Resolved IDs are cached for the life of the process: Drive folder IDs never
    change, even across token refreshes. Call ``clear_cache()`` on sign-out.
    """

    def __init__(self, store: FolderStore, root_id: str = "root") -> None:
        self.store = store
        self.root_id = root_id
        self._segment_cache: dict[tuple[str, str], str] = {}
        self._path_cache: dict[str, str] = {}
        self._pending: dict[tuple[str, str], asyncio.Task[str]] = {}
        # Bumped by clear_cache; resolutions started earlier must not repopulate it
        self._generation = 0

    async def ensure_folder(self, folder_path: str) -> str:
        """
        Resolve a folder path, creating missing segments.

        Args:
            folder_path: Slash-delimited path relative to the root folder

        Returns:
            Folder ID of the last segment (the root ID for an empty path)
        """
        segments = split_path(folder_path)
        if not segments:
            return self.root_id

        path_key = "/".join(segments)
        cached = self._path_cache.get(path_key)
        if cached is not None:
            return cached

        generation = self._generation
        parent_id = self.root_id
        for name in segments:
            parent_id = await self.ensure_single_folder(parent_id, name)

        if generation == self._generation:
            self._path_cache[path_key] = parent_id
        return parent_id

    async def ensure_single_folder(self, parent_id: str, name: str) -> str:
        """Resolve one segment under ``parent_id``."""
        key = (parent_id, name)

        cached = self._segment_cache.get(key)
        if cached is not None:
            return cached

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._resolve_segment(key, self._generation))
            self._pending[key] = task
        else:
            logger.debug("Joining in-flight folder resolution", parent_id=parent_id, folder_name=name)

        # A cancelled waiter must not cancel the resolution other callers share
        return await asyncio.shield(task)

    async def _resolve_segment(self, key: tuple[str, str], generation: int) -> str:
        parent_id, name = key
        try:
            folder_id = await self.store.find_folder(parent_id, name)
            if folder_id is None:
                folder_id = await self.store.create_folder(parent_id, name)
                logger.info("Created Drive folder", folder_name=name, parent_id=parent_id, folder_id=folder_id)
            if generation == self._generation:
                self._segment_cache[key] = folder_id
            return folder_id
        finally:
            # Cleared on error too, so a failed lookup can be retried
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]

    def clear_cache(self) -> None:
        """Forget every resolved folder (folder IDs belong to the signed-in account)."""
        self._segment_cache.clear()
        self._path_cache.clear()
        self._pending.clear()
        self._generation += 1
        logger.info("Folder cache cleared")

    @property
    def cached_segments(self) -> int:
        """Number of cached (parent, name) entries."""
        return len(self._segment_cache)
