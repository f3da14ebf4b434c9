"""
Checkout access

File hashing and code search against a repository checkout.
"""

from .file_hasher import (
    CheckoutFileHasher,
    FileHasher,
    FileHashError,
    hash_file_content,
)
from .search import (
    CodeSearchHit,
    RepositorySearch,
    RepositorySearchConfig,
    SymbolMatch,
)

__all__ = [
    "CheckoutFileHasher",
    "CodeSearchHit",
    "FileHashError",
    "FileHasher",
    "RepositorySearch",
    "RepositorySearchConfig",
    "SymbolMatch",
    "hash_file_content",
]
