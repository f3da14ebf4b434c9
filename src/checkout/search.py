"""Repository search over a local checkout.

Backs the two tools the step reviewer is allowed to call:

- semantic_code_search: broad, fuzzy discovery. The query is split into
  keywords and files are ranked by how many keyword hits they contain.
- symbol_lookup: exact identifier lookup. Every line containing the symbol
  (case-insensitive) is returned with surrounding context lines.

Line numbers are 1-based and inclusive so the reviewer can cite results
directly as "path:start-end" evidence.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from src.checkout.security import filter_search_candidates, redact_secrets

logger = logging.getLogger(__name__)

DEFAULT_RESULT_LIMIT = 8
MAX_RESULT_LIMIT = 25

# File extensions we consider source code (allowlist approach)
SOURCE_EXTENSIONS = frozenset({
    ".py", ".ts", ".js", ".tsx", ".jsx", ".mjs", ".cjs",
    ".go", ".rs", ".java", ".kt", ".rb", ".php", ".cs",
    ".json", ".yaml", ".yml", ".toml",
    ".md", ".sql", ".html", ".css", ".scss",
    ".sh", ".cfg", ".ini", ".vue", ".svelte",
})

# Directories never walked
EXCLUDED_DIRS = frozenset({
    "__pycache__", ".git", "node_modules", ".mypy_cache",
    ".pytest_cache", ".tox", "dist", "build", ".eggs",
    "venv", ".venv", "env", ".next", "coverage",
})

_STOPWORDS = frozenset({
    "the", "and", "for", "with", "that", "this", "from", "into", "when",
    "user", "users", "can", "should", "will", "are", "has", "have", "not",
    "their", "then", "they", "them", "its", "via", "all", "any",
})

_KEYWORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]{2,}")


def ensure_bounded_limit(limit: Optional[int]) -> int:
    """Clamp a requested result limit to [1, MAX_RESULT_LIMIT]."""
    if limit is None:
        return DEFAULT_RESULT_LIMIT
    return max(1, min(int(limit), MAX_RESULT_LIMIT))


def extract_keywords(query: str) -> List[str]:
    """Split a free-text query into unique lowercase keywords, in order."""
    seen: Dict[str, None] = {}
    for token in _KEYWORD_RE.findall(query):
        lowered = token.lower()
        if lowered not in _STOPWORDS:
            seen.setdefault(lowered, None)
    return list(seen)


@dataclass
class RepositorySearchConfig:
    """Configuration for RepositorySearch."""

    max_file_size_bytes: int = 500_000
    max_files_scanned: int = 5000
    snippet_context_lines: int = 8


@dataclass
class SymbolMatch:
    """One matching line plus its context window."""

    start: int
    end: int
    content: str


@dataclass
class CodeSearchHit:
    """A file returned by a search, with the most relevant window."""

    path: str
    score: int
    start_line: int
    end_line: int
    content: str
    matched_keywords: List[str] = field(default_factory=list)
    matches: List[SymbolMatch] = field(default_factory=list)

    def to_dict(self) -> Dict:
        data = {
            "path": self.path,
            "score": self.score,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "content": self.content,
        }
        if self.matched_keywords:
            data["matchedKeywords"] = self.matched_keywords
        if self.matches:
            data["matches"] = [
                {"start": m.start, "end": m.end, "content": m.content}
                for m in self.matches
            ]
        return data


class RepositorySearch:
    """Keyword and symbol search over one checkout directory.

    The candidate file list is built once per instance (one reviewer run
    works against one fixed commit).
    """

    def __init__(
        self,
        root: Union[str, Path],
        config: Optional[RepositorySearchConfig] = None,
    ):
        self.root = Path(root)
        self.config = config or RepositorySearchConfig()
        self._files: Optional[List[str]] = None

    # ========================================================================
    # Tools
    # ========================================================================

    def semantic_code_search(
        self,
        query: str,
        limit: Optional[int] = None,
        ext_type: Optional[str] = None,
    ) -> List[CodeSearchHit]:
        """Rank files by keyword hits for a free-text query."""
        keywords = extract_keywords(query)
        if not keywords:
            logger.debug("Search query '%s' has no usable keywords", query)
            return []

        hits = []
        for rel_path in self._candidate_files(ext_type):
            lines = self._read_lines(rel_path)
            if lines is None:
                continue

            score = 0
            matched = []
            first_line = None
            for keyword in keywords:
                pattern = re.compile(re.escape(keyword), re.IGNORECASE)
                keyword_hits = 0
                for idx, line in enumerate(lines):
                    found = len(pattern.findall(line))
                    if found:
                        keyword_hits += found
                        if first_line is None:
                            first_line = idx
                if keyword_hits:
                    score += keyword_hits
                    matched.append(keyword)

            if not matched:
                continue

            # Files matching more distinct keywords rank above files that
            # repeat one keyword many times.
            score += 10 * (len(matched) - 1)
            start, end, content = self._window(lines, first_line or 0)
            hits.append(CodeSearchHit(
                path=rel_path,
                score=score,
                start_line=start,
                end_line=end,
                content=content,
                matched_keywords=matched,
            ))

        hits.sort(key=lambda h: (-h.score, h.path))
        return hits[: ensure_bounded_limit(limit)]

    def symbol_lookup(
        self,
        symbol: str,
        limit: Optional[int] = None,
        surrounding_lines: Optional[int] = None,
        ext_type: Optional[str] = None,
    ) -> List[CodeSearchHit]:
        """Find every line containing `symbol`, with context."""
        trimmed = symbol.strip()
        if not trimmed:
            raise ValueError("Symbol name is required to locate code references")

        surrounding = max(0, surrounding_lines if surrounding_lines is not None else 3)
        lowered = trimmed.lower()
        bounded = ensure_bounded_limit(limit)

        hits = []
        for rel_path in self._candidate_files(ext_type):
            lines = self._read_lines(rel_path)
            if lines is None:
                continue

            matches = []
            for idx, line in enumerate(lines):
                if lowered in line.lower():
                    start_idx = max(0, idx - surrounding)
                    end_idx = min(len(lines) - 1, idx + surrounding)
                    matches.append(SymbolMatch(
                        start=start_idx + 1,
                        end=end_idx + 1,
                        content=redact_secrets("\n".join(lines[start_idx:end_idx + 1])),
                    ))

            if matches:
                hits.append(CodeSearchHit(
                    path=rel_path,
                    score=len(matches),
                    start_line=matches[0].start,
                    end_line=matches[0].end,
                    content=matches[0].content,
                    matches=matches,
                ))
                if len(hits) >= bounded:
                    break

        return hits

    # ========================================================================
    # Internal methods
    # ========================================================================

    def _candidate_files(self, ext_type: Optional[str] = None) -> List[str]:
        if self._files is None:
            self._files = self._walk()

        if not ext_type:
            return self._files

        ext = ext_type if ext_type.startswith(".") else f".{ext_type}"
        return [f for f in self._files if f.endswith(ext)]

    def _walk(self) -> List[str]:
        files = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
            for name in sorted(filenames):
                if Path(name).suffix.lower() not in SOURCE_EXTENSIONS:
                    continue
                rel = Path(dirpath, name).relative_to(self.root).as_posix()
                files.append(rel)
                if len(files) >= self.config.max_files_scanned:
                    logger.warning(
                        "Stopped indexing %s after %d files",
                        self.root, self.config.max_files_scanned,
                    )
                    return filter_search_candidates(files)

        return filter_search_candidates(files)

    def _read_lines(self, rel_path: str) -> Optional[List[str]]:
        full_path = self.root / rel_path
        try:
            if full_path.stat().st_size > self.config.max_file_size_bytes:
                logger.debug("Skipping large file: %s", rel_path)
                return None
            return full_path.read_text(encoding="utf-8", errors="ignore").splitlines()
        except OSError as e:
            logger.debug("Could not read file %s: %s", rel_path, e)
            return None

    def _window(self, lines: List[str], center: int):
        context = self.config.snippet_context_lines
        start_idx = max(0, center - context)
        end_idx = min(len(lines) - 1, center + context)
        content = redact_secrets("\n".join(lines[start_idx:end_idx + 1]))
        return start_idx + 1, end_idx + 1, content
