"""Full-text search over session log files.

Query syntax:
    error timeout        - both terms (implicit AND)
    error AND timeout    - same, explicit
    error OR warning     - either term
    a b OR c             - (a AND b) OR c; AND binds tighter than OR

Only uppercase AND/OR are operators; every other word is a lowercase
substring term matched against the raw JSON line.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .config import BACKEND_SEARCH_MAX_RESULTS, SNIPPET_CONTEXT_CHARS
from .models import SearchMatch, SearchResponse

AND = "AND"
OR = "OR"


@dataclass(frozen=True)
class Term:
    text: str


@dataclass(frozen=True)
class And:
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Or:
    left: "Expr"
    right: "Expr"


Expr = Union[Term, And, Or]


def tokenize(query: str) -> list[str]:
    """Split a query into operator tokens and lowercased terms."""
    tokens = []
    for word in query.split():
        if word in (AND, OR):
            tokens.append(word)
        else:
            tokens.append(word.lower())
    return tokens


class _Parser:
    """Recursive-descent parser: or_expr -> and_expr (OR and_expr)*."""

    def __init__(self, tokens: list[str]):
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> Optional[str]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def parse_or(self) -> Optional[Expr]:
        left = self.parse_and()
        if left is None:
            return None
        while self._peek() == OR:
            self.pos += 1
            right = self.parse_and()
            if right is None:
                break  # trailing OR
            left = Or(left, right)
        return left

    def parse_and(self) -> Optional[Expr]:
        left = self.parse_term()
        if left is None:
            return None
        while True:
            token = self._peek()
            if token is None or token == OR:
                break
            if token == AND:
                self.pos += 1
            right = self.parse_term()
            if right is None:
                break  # trailing AND
            left = And(left, right)
        return left

    def parse_term(self) -> Optional[Expr]:
        # Orphan operators are skipped
        while self._peek() in (AND, OR):
            self.pos += 1
        token = self._peek()
        if token is None:
            return None
        self.pos += 1
        return Term(token)


def parse_query(query: str) -> Optional[Expr]:
    """Parse a query string; None when it has no terms."""
    tokens = tokenize(query)
    if not tokens:
        return None
    return _Parser(tokens).parse_or()


def matches(expr: Expr, line: str) -> bool:
    """Case-insensitive evaluation of a parsed query against a line."""
    return _matches(expr, line.lower())


def _matches(expr: Expr, line: str) -> bool:
    if isinstance(expr, Term):
        return expr.text in line
    if isinstance(expr, And):
        return _matches(expr.left, line) and _matches(expr.right, line)
    return _matches(expr.left, line) or _matches(expr.right, line)


def collect_terms(expr: Expr) -> list[str]:
    if isinstance(expr, Term):
        return [expr.text]
    return collect_terms(expr.left) + collect_terms(expr.right)


def extract_text_content(content) -> Optional[str]:
    """Pull searchable text out of message content (string or block list)."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return None

    blocks = [item for item in content if isinstance(item, dict)]
    for item in blocks:
        if item.get("type") == "text" and isinstance(item.get("text"), str):
            return item["text"]
    for item in blocks:
        if item.get("type") == "thinking" and isinstance(item.get("thinking"), str):
            return item["thinking"]
    for item in blocks:
        if item.get("type") == "tool_use" and isinstance(item.get("name"), str):
            if "input" in item:
                return f"[{item['name']}] {json.dumps(item['input'], separators=(',', ':'))}"
            return f"[{item['name']}]"
    return None


def extract_text_from_line(line: str) -> str:
    """Best text to build a snippet from; the raw line as a last resort."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return line
    if not isinstance(data, dict):
        return line

    message = data.get("message")
    if isinstance(message, dict) and "content" in message:
        text = extract_text_content(message["content"])
        if text is not None:
            return text
    if isinstance(data.get("content"), str):
        return data["content"]
    if isinstance(data.get("summary"), str):
        return data["summary"]
    return line


def build_snippet(text: str, terms: list[str], context_chars: int = SNIPPET_CONTEXT_CHARS) -> str:
    """Cut `context_chars` around the earliest matching term, on word boundaries."""
    text_lower = text.lower()
    positions = [p for p in (text_lower.find(t) for t in terms) if p >= 0]
    pos = min(positions) if positions else 0

    start = max(0, pos - context_chars)
    end = min(len(text), pos + context_chars)

    space = text.rfind(" ", 0, start)
    if space >= 0:
        start = space + 1
    space = text.find(" ", end)
    if space >= 0:
        end = space

    snippet = text[start:end].strip()
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet = snippet + "..."
    return snippet


def search_file(
    path: Path,
    query: str,
    max_results: int = BACKEND_SEARCH_MAX_RESULTS,
) -> SearchResponse:
    """Search every line of a JSONL log, oldest first.

    Returns an empty response when the query has no terms or the file
    cannot be opened.
    """
    expr = parse_query(query)
    if expr is None:
        return SearchResponse()

    terms = collect_terms(expr)
    found: list[SearchMatch] = []
    total_searched = 0
    byte_offset = 0
    try:
        with open(path, "rb") as f:
            for sequence, raw in enumerate(f):
                offset = byte_offset
                byte_offset += len(raw)
                total_searched += 1
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if matches(expr, line):
                    snippet = build_snippet(extract_text_from_line(line), terms)
                    found.append(SearchMatch(sequence, offset, snippet))
                    if len(found) >= max_results:
                        return SearchResponse(found, total_searched, truncated=True)
    except OSError:
        return SearchResponse()

    return SearchResponse(found, total_searched, truncated=False)
