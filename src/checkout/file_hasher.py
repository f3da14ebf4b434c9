"""File hashing against a repository checkout.

The evidence cache only needs one thing from a checkout: the current content
hash of a file. `FileHasher` is that capability; `CheckoutFileHasher` is the
local-directory implementation. Remote sandboxes implement `hash_file` the
same way and must raise FileHashError (never return a sentinel) when a file
cannot be read, because the cache validator treats a read failure as
invalidation.
"""

import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from src.checkout.security import resolve_checkout_path

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 16


class FileHashError(Exception):
    """Raised when a file's content cannot be read for hashing."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


def hash_file_content(content: Union[bytes, str]) -> str:
    """SHA-256 hex digest of file content."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


class FileHasher(ABC):
    """Content-hash capability scoped to one checkout."""

    @abstractmethod
    async def hash_file(self, path: str) -> str:
        """Return the content hash of `path`.

        Raises:
            FileHashError: If the file does not exist or cannot be read.
        """


class CheckoutFileHasher(FileHasher):
    """Hashes files in a local checkout directory.

    Reads run in worker threads so that many files can be hashed
    concurrently; a semaphore bounds simultaneous reads.
    """

    def __init__(
        self,
        root: Union[str, Path],
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self.root = Path(root)
        self.max_concurrency = max_concurrency
        self._semaphore: Optional[asyncio.Semaphore] = None

    def _get_semaphore(self) -> asyncio.Semaphore:
        # Created lazily so the hasher can be built outside a running loop.
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
        return self._semaphore

    async def hash_file(self, path: str) -> str:
        full_path = resolve_checkout_path(self.root, path)
        if full_path is None:
            raise FileHashError(path, "path is outside the checkout")

        async with self._get_semaphore():
            try:
                content = await asyncio.to_thread(full_path.read_bytes)
            except FileNotFoundError:
                raise FileHashError(path, "file does not exist")
            except IsADirectoryError:
                raise FileHashError(path, "path is a directory")
            except OSError as e:
                raise FileHashError(path, f"read failed: {e}")

        return hash_file_content(content)
