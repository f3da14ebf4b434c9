"""Search tools exposed to the step reviewer.

Tool definitions use the OpenAI function-calling format. `ReviewerToolbox`
executes calls against a RepositorySearch and records every query so the
reviewer trace can report what was searched even when the model forgets to.
"""

import json
import logging
from typing import Any, Dict, List

from src.checkout.search import MAX_RESULT_LIMIT, RepositorySearch

logger = logging.getLogger(__name__)

SEMANTIC_CODE_SEARCH = "semantic_code_search"
SYMBOL_LOOKUP = "symbol_lookup"

REVIEWER_TOOLS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": SEMANTIC_CODE_SEARCH,
            "description": (
                "Fuzzy search across the repository. Use for broad discovery "
                "when you do not know exact identifiers. Returns ranked files "
                "with the most relevant line window."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Natural language or keyword query",
                    },
                    "limit": {
                        "type": "integer",
                        "minimum": 1,
                        "maximum": MAX_RESULT_LIMIT,
                        "description": "Maximum number of files to return",
                    },
                    "ext_type": {
                        "type": "string",
                        "description": "Restrict to one file extension, e.g. ts or py",
                    },
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": SYMBOL_LOOKUP,
            "description": (
                "Exact identifier lookup (case-insensitive). Returns every line "
                "containing the symbol with surrounding context lines."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "symbol": {
                        "type": "string",
                        "description": "Function, class, variable or route name",
                    },
                    "limit": {
                        "type": "integer",
                        "minimum": 1,
                        "maximum": MAX_RESULT_LIMIT,
                        "description": "Maximum number of files to return",
                    },
                    "surrounding_lines": {
                        "type": "integer",
                        "minimum": 0,
                        "description": "Context lines around each match (default 3)",
                    },
                    "ext_type": {
                        "type": "string",
                        "description": "Restrict to one file extension, e.g. ts or py",
                    },
                },
                "required": ["symbol"],
            },
        },
    },
]


class ReviewerToolbox:
    """Executes reviewer tool calls against one checkout."""

    def __init__(self, search: RepositorySearch):
        self.search = search
        self.queries: List[str] = []

    def __call__(self, name: str, arguments: str) -> str:
        return self.dispatch(name, arguments)

    def dispatch(self, name: str, arguments: str) -> str:
        """Run one tool call. Failures are reported back to the model as JSON."""
        try:
            args = json.loads(arguments or "{}")
        except json.JSONDecodeError as e:
            logger.warning("Bad arguments for tool %s: %s", name, e)
            return json.dumps({"error": f"Arguments are not valid JSON: {e}"})
        if not isinstance(args, dict):
            return json.dumps({"error": "Arguments must be a JSON object"})

        try:
            if name == SEMANTIC_CODE_SEARCH:
                query = str(args.get("query", ""))
                self._record(query)
                hits = self.search.semantic_code_search(
                    query,
                    limit=args.get("limit"),
                    ext_type=args.get("ext_type"),
                )
            elif name == SYMBOL_LOOKUP:
                symbol = str(args.get("symbol", ""))
                self._record(symbol)
                hits = self.search.symbol_lookup(
                    symbol,
                    limit=args.get("limit"),
                    surrounding_lines=args.get("surrounding_lines"),
                    ext_type=args.get("ext_type"),
                )
            else:
                logger.warning("Reviewer called unknown tool %s", name)
                return json.dumps({"error": f"Unknown tool: {name}"})
        except (TypeError, ValueError) as e:
            logger.info("Tool %s rejected arguments %s: %s", name, args, e)
            return json.dumps({"error": str(e)})

        logger.debug("Tool %s returned %d result(s)", name, len(hits))
        return json.dumps({"results": [hit.to_dict() for hit in hits]})

    def _record(self, query: str) -> None:
        query = query.strip()
        if query and query not in self.queries:
            self.queries.append(query)
