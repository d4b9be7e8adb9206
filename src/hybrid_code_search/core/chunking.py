"""Split file content into addressable chunks.

Syntax-aware chunking emits one chunk per top-level declaration, plus whole-line
chunks for the top-level code between declarations (imports, constants). Python is
parsed with :mod:`ast`; other supported languages use tree-sitter grammars
from ``tree-sitter-language-pack``. Everything else, or any file where the
parser fails or finds no declarations, falls back to fixed line windows.
"""

import ast
import hashlib
import re

from loguru import logger
from tree_sitter_language_pack import get_parser

from ..config.defaults import (
    DECLARATION_NODE_TYPES,
    DEFAULT_CHUNK_SIZE_LINES,
    TREE_SITTER_GRAMMARS,
)
from .exceptions import ParsingError
from .models import Chunk, Range

_LINE_SPLIT = re.compile(r"\r?\n")

# Value node types that make a ``const foo = ...`` a declaration worth its own chunk
_FUNCTION_VALUE_TYPES = frozenset(
    {"arrow_function", "function_expression", "function", "class", "generator_function"}
)


def compute_content_hash(text: str) -> str:
    """SHA-256 hex digest used for chunk and document change detection."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def split_lines(text: str) -> list[str]:
    return _LINE_SPLIT.split(text)


def line_window_chunk_id(uri: str, ordinal: int) -> str:
    return f"{uri}::chunk::{ordinal}"


def syntax_chunk_id(uri: str, start_line: int, end_line: int) -> str:
    return f"{uri}::{start_line}-{end_line}"


class Chunker:
    """Produce deterministic chunks for a file.

    Chunk ids depend only on the uri and the span, so re-chunking
    unchanged content reproduces the same ids and ranges.
    """

    def __init__(self, chunk_size_lines: int = DEFAULT_CHUNK_SIZE_LINES) -> None:
        if chunk_size_lines < 1:
            raise ValueError("chunk_size_lines must be at least 1")
        self.chunk_size_lines = chunk_size_lines
        self._parsers: dict[str, object] = {}

    def chunk(self, uri: str, language_id: str | None, content: str) -> list[Chunk]:
        """Split content into chunks.

        Args:
            uri: Document uri used as the id prefix
            language_id: Language identifier, None when unknown
            content: Full file text

        Returns:
            At least one chunk; an empty file yields a single empty chunk
        """
        if content.strip():
            chunks: list[Chunk] = []
            try:
                if language_id == "python":
                    chunks = self._chunk_python(uri, content)
                elif language_id in TREE_SITTER_GRAMMARS:
                    chunks = self._chunk_tree_sitter(uri, language_id, content)
            except ParsingError as e:
                logger.debug(f"{e}; using line windows")
            if chunks:
                chunks = self._with_gap_chunks(uri, language_id, content, chunks)
            # Two declarations sharing one line would collide on id
            if chunks and len({c.id for c in chunks}) == len(chunks):
                return chunks

        return self.chunk_by_lines(uri, language_id, content)

    def chunk_by_lines(
        self, uri: str, language_id: str | None, content: str
    ) -> list[Chunk]:
        """Non-overlapping windows of ``chunk_size_lines`` lines."""
        lines = split_lines(content)
        chunks: list[Chunk] = []
        for ordinal, start in enumerate(range(0, len(lines), self.chunk_size_lines)):
            window = lines[start : start + self.chunk_size_lines]
            end_line = start + len(window)
            chunks.append(
                Chunk(
                    id=line_window_chunk_id(uri, ordinal),
                    uri=uri,
                    content="\n".join(window),
                    language_id=language_id,
                    range=Range.from_lines(start + 1, 1, end_line, len(window[-1]) + 1),
                )
            )
        return chunks

    def _with_gap_chunks(
        self, uri: str, language_id: str | None, content: str, chunks: list[Chunk]
    ) -> list[Chunk]:
        """Add whole-line chunks for imports, constants and other top-level code.

        Lines touched by a declaration count as covered. Runs of uncovered
        lines are trimmed of blank lines and split at ``chunk_size_lines``.
        """
        lines = split_lines(content)
        covered = [False] * (len(lines) + 1)
        for chunk in chunks:
            for line in range(chunk.range.start.line, chunk.range.end.line + 1):
                covered[line] = True

        gaps: list[Chunk] = []
        run: list[int] = []
        for line in range(1, len(lines) + 2):
            if line <= len(lines) and not covered[line]:
                run.append(line)
                continue
            while run and not lines[run[0] - 1].strip():
                run.pop(0)
            while run and not lines[run[-1] - 1].strip():
                run.pop()
            for start in range(0, len(run), self.chunk_size_lines):
                window = run[start : start + self.chunk_size_lines]
                first, last = window[0], window[-1]
                gaps.append(
                    Chunk(
                        id=syntax_chunk_id(uri, first, last),
                        uri=uri,
                        content="\n".join(lines[first - 1 : last]),
                        language_id=language_id,
                        range=Range.from_lines(first, 1, last, len(lines[last - 1]) + 1),
                    )
                )
            run = []

        if not gaps:
            return chunks
        return sorted(chunks + gaps, key=lambda c: (c.range.start.line, c.range.start.column))

    # ── Python ──────────────────────────────────────────────────────────

    def _chunk_python(self, uri: str, content: str) -> list[Chunk]:
        try:
            tree = ast.parse(content)
        except (SyntaxError, ValueError) as e:
            raise ParsingError(f"Python parse failed for {uri}: {e}") from e

        lines = split_lines(content)
        chunks = []
        for node in tree.body:
            if not isinstance(node, ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef):
                continue
            first = node.decorator_list[0] if node.decorator_list else node
            start_line = first.lineno
            end_line = node.end_lineno or node.lineno
            start_col = _char_column(lines[start_line - 1], first.col_offset)
            end_col = _char_column(lines[end_line - 1], node.end_col_offset or 0)
            chunks.append(
                self._span_chunk(
                    uri, "python", lines, start_line, start_col, end_line, end_col
                )
            )
        return chunks

    # ── tree-sitter ─────────────────────────────────────────────────────

    def _get_parser(self, language_id: str):
        parser = self._parsers.get(language_id)
        if parser is None:
            parser = get_parser(TREE_SITTER_GRAMMARS[language_id])
            self._parsers[language_id] = parser
        return parser

    def _chunk_tree_sitter(
        self, uri: str, language_id: str, content: str
    ) -> list[Chunk]:
        try:
            parser = self._get_parser(language_id)
            tree = parser.parse(content.encode("utf-8"))
        except (LookupError, ValueError, RuntimeError) as e:
            raise ParsingError(
                f"tree-sitter unavailable for {language_id} ({uri}): {e}"
            ) from e

        if tree.root_node.has_error and not tree.root_node.children:
            return []

        lines = split_lines(content)
        chunks = []
        for node in tree.root_node.children:
            if not _is_declaration(node):
                continue
            start_row, start_byte_col = node.start_point
            end_row, end_byte_col = node.end_point
            start_line = start_row + 1
            end_line = end_row + 1
            start_col = _char_column(lines[start_row], start_byte_col)
            end_col = _char_column(lines[end_row], end_byte_col)
            chunks.append(
                self._span_chunk(
                    uri, language_id, lines, start_line, start_col, end_line, end_col
                )
            )
        return chunks

    @staticmethod
    def _span_chunk(
        uri: str,
        language_id: str,
        lines: list[str],
        start_line: int,
        start_col: int,
        end_line: int,
        end_col: int,
    ) -> Chunk:
        # start_col/end_col are 0-based character offsets here
        if start_line == end_line:
            text = lines[start_line - 1][start_col:end_col]
        else:
            parts = [lines[start_line - 1][start_col:]]
            parts.extend(lines[start_line : end_line - 1])
            parts.append(lines[end_line - 1][:end_col])
            text = "\n".join(parts)
        return Chunk(
            id=syntax_chunk_id(uri, start_line, end_line),
            uri=uri,
            content=text,
            language_id=language_id,
            range=Range.from_lines(start_line, start_col + 1, end_line, end_col + 1),
        )


def _char_column(line: str, byte_offset: int) -> int:
    """Convert a UTF-8 byte offset within a line into a character offset."""
    return len(line.encode("utf-8")[:byte_offset].decode("utf-8", errors="ignore"))


def _is_declaration(node) -> bool:
    if node.type == "export_statement":
        return any(_is_declaration(child) for child in node.children)
    if node.type == "lexical_declaration":
        for declarator in node.children:
            value = declarator.child_by_field_name("value")
            if value is not None and value.type in _FUNCTION_VALUE_TYPES:
                return True
        return False
    return node.type in DECLARATION_NODE_TYPES
