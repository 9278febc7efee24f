"""
Routine parsing using SQLGlot.

A routine definition is tokenized once, its header (``CREATE PROCEDURE ... AS``) is
skipped and the body is cut into single statements. Each statement is parsed on its
own with error recovery, so one bad statement costs a syntax error and not the rest
of the routine. Recovered trees are flattened into tree events for the extractor.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from sqlglot import expressions as exp
from sqlglot.dialects.tsql import TSQL
from sqlglot.errors import ErrorLevel, ParseError as SqlglotParseError, TokenError
from sqlglot.tokens import Token, TokenType

from .errors import UntokenizableSourceError
from .models import (
    EndOfInput,
    EnterIdentifier,
    EnterLiteral,
    EnterTableAlias,
    EnterTableName,
    ParserEvent,
    SyntaxErrorEvent,
    TreeEvent,
)

logger = logging.getLogger(__name__)


class RoutineDialect(TSQL):
    """T-SQL, except that PRINT/FETCH/END never swallow the rest of a body as one string."""

    class Tokenizer(TSQL.Tokenizer):
        COMMANDS = set()


_ROUTINE_KINDS = {"PROC", "PROCEDURE", "FUNCTION", "VIEW", "TRIGGER"}
_BLOCK_WORDS = {"BEGIN", "END", "ELSE", "GO"}
_BLOCK_SUFFIXES = {"TRY", "CATCH", "TRAN", "TRANSACTION"}
_CONDITION_WORDS = {"IF", "WHILE"}
_FLOW_ONLY = {
    "PRINT", "RAISERROR", "THROW", "OPEN", "FETCH", "CLOSE", "DEALLOCATE",
    "COMMIT", "ROLLBACK", "SAVE", "GOTO", "WAITFOR", "BREAK", "CONTINUE", "USE", "RETURN",
}
_STATEMENT_WORDS = {
    "SELECT", "INSERT", "UPDATE", "DELETE", "MERGE", "DECLARE", "SET", "TRUNCATE",
    "EXEC", "EXECUTE", "CREATE", "DROP", "ALTER",
} | _FLOW_ONLY
_CTE_BODIES = {"SELECT", "INSERT", "UPDATE", "DELETE", "MERGE"}
# previous word that keeps a statement keyword inside the current statement
_CONTINUATIONS = {"UNION", "ALL", "EXCEPT", "INTERSECT", "FOR", "ON", "AFTER", "OF", "INSTEAD", ","}
_DDL_OBJECTS = {"TABLE", "VIEW", "PROC", "PROCEDURE", "FUNCTION", "INDEX", "SCHEMA", "TRIGGER", "TYPE"}
_VALUE_TOKENS = {
    TokenType.STRING,
    TokenType.NATIONAL_STRING,
    TokenType.IDENTIFIER,
    TokenType.NUMBER,
}


def _normalize_tsql(text: str) -> str:
    """Blank out batch separators and session noise without shifting line numbers."""
    t = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    t = re.sub(r"\x1b\[[0-9;]*[A-Za-z]", "", t)
    t = re.sub(r"[\u200E\u200F\u202A-\u202E\u2066-\u2069\uFEFF]", "", t)
    t = re.sub(r"[\u200B\u200C\u200D\u00A0]", " ", t)
    t = re.sub(r"^[ \t]*SET[ \t]+(ANSI_NULLS|QUOTED_IDENTIFIER)[ \t]+(ON|OFF)[ \t]*;?[ \t]*$", "", t, flags=re.I | re.M)
    t = re.sub(r"^[ \t]*GO[ \t]*;?[ \t]*$", "", t, flags=re.I | re.M)
    return t


def _word(token: Token) -> str:
    if token.token_type in _VALUE_TOKENS:
        return ""
    return token.text.upper()


@dataclass
class _Chunk:
    tokens: List[Token] = field(default_factory=list)
    condition: bool = False
    head: str = ""
    source_seen: bool = False

    def add(self, token: Token) -> None:
        if not self.tokens and not self.condition:
            self.head = _word(token)
        self.tokens.append(token)

    @property
    def prev_word(self) -> str:
        return _word(self.tokens[-1]) if self.tokens else ""

    @property
    def declares_cursor(self) -> bool:
        return any(_word(t) == "CURSOR" for t in self.tokens)

    @property
    def parseable(self) -> bool:
        if not self.tokens:
            return False
        if self.condition:
            return True
        if self.head in _FLOW_ONLY:
            return False
        # SET NOCOUNT ON and friends; SET @var = ... is kept
        if self.head == "SET" and (len(self.tokens) < 2 or self.tokens[1].token_type != TokenType.PARAMETER):
            return False
        return True


def _routine_kind_at(tokens: List[Token]) -> Optional[int]:
    """Position of PROCEDURE/FUNCTION/... in the first ``CREATE [OR ALTER] ...`` header."""
    for start, token in enumerate(tokens):
        if _word(token) not in ("CREATE", "ALTER"):
            continue
        for i in range(start + 1, min(start + 4, len(tokens))):
            if _word(tokens[i]) in _ROUTINE_KINDS:
                return i
        return None
    return None


def _body_start(tokens: List[Token]) -> int:
    """Index of the first body token after a routine header, 0 when there is none.

    Anything before the header (``USE``, session ``SET``s) is dropped with it.
    """
    kind_at = _routine_kind_at(tokens)
    if kind_at is None:
        return 0
    depth = 0
    for i in range(kind_at + 1, len(tokens)):
        tt = tokens[i].token_type
        if tt == TokenType.L_PAREN:
            depth += 1
        elif tt == TokenType.R_PAREN:
            depth -= 1
        elif depth == 0 and _word(tokens[i]) == "AS":
            # "@param AS int" and "WITH EXECUTE AS owner" are not the body marker
            if i >= 2 and tokens[i - 2].token_type == TokenType.PARAMETER:
                continue
            if _word(tokens[i - 1]) in ("EXEC", "EXECUTE"):
                continue
            return i + 1
    return 0


def split_statements(tokens: List[Token]) -> List[_Chunk]:
    """Cut a routine body into statements and IF/WHILE conditions."""
    chunks: List[_Chunk] = []
    current = _Chunk()
    depth = 0
    case_depth = 0
    skip_next_suffix = False

    def flush(condition: bool = False) -> None:
        nonlocal current
        if current.parseable:
            chunks.append(current)
        current = _Chunk(condition=condition)

    body = tokens[_body_start(tokens):]
    hint_end = -1
    for i, token in enumerate(body):
        if i <= hint_end:
            continue
        tt = token.token_type
        word = _word(token)

        if skip_next_suffix:
            skip_next_suffix = False
            if word in _BLOCK_SUFFIXES:
                continue

        if tt == TokenType.L_PAREN:
            depth += 1
        elif tt == TokenType.R_PAREN:
            depth = max(depth - 1, 0)
        elif word == "CASE":
            case_depth += 1
        elif word == "END" and case_depth:
            case_depth -= 1
            current.add(token)
            continue

        if depth or case_depth:
            current.add(token)
            continue

        if word == "WITH" and _is_insert_hint(current, body, i):
            # INSERT INTO t WITH (TABLOCK) ...: the hint would read as a CTE
            hint_end = _closing_paren(body, i + 1)
            continue

        if tt == TokenType.SEMICOLON:
            flush()
            continue

        if word in _BLOCK_WORDS:
            flush()
            skip_next_suffix = word in ("BEGIN", "END")
            continue

        if word in _CONDITION_WORDS and current.prev_word not in _DDL_OBJECTS:
            flush(condition=True)
            continue

        if word == "FOR" and current.head == "DECLARE" and current.declares_cursor:
            # the cursor query is parsed on its own, the declaration itself names no table
            current = _Chunk()
            continue

        if word in _STATEMENT_WORDS and current.tokens and _starts_statement(current, word):
            flush()

        current.add(token)

    flush()
    return chunks


def _is_insert_hint(chunk: _Chunk, body: List[Token], at: int) -> bool:
    if chunk.head != "INSERT" or chunk.source_seen or chunk.prev_word in ("INSERT", "INTO"):
        return False
    return at + 1 < len(body) and body[at + 1].token_type == TokenType.L_PAREN


def _closing_paren(tokens: List[Token], open_at: int) -> int:
    depth = 0
    for i in range(open_at, len(tokens)):
        if tokens[i].token_type == TokenType.L_PAREN:
            depth += 1
        elif tokens[i].token_type == TokenType.R_PAREN:
            depth -= 1
            if depth == 0:
                return i
    return len(tokens) - 1


def _starts_statement(chunk: _Chunk, word: str) -> bool:
    if chunk.condition:
        return True
    if chunk.head == "MERGE":
        return False
    if chunk.prev_word in _CONTINUATIONS:
        return False
    if chunk.head == "WITH" and word in _CTE_BODIES:
        chunk.head = word
        return False
    if chunk.head == "INSERT" and not chunk.source_seen and word in ("SELECT", "EXEC", "EXECUTE"):
        chunk.source_seen = True
        return False
    if chunk.head == "UPDATE" and not chunk.source_seen and word == "SET":
        chunk.source_seen = True
        return False
    if chunk.head == "ALTER" and word in ("DROP", "SET", "ALTER"):
        return False
    return True


def _part_text(part: exp.Expression) -> Optional[str]:
    if not isinstance(part, exp.Identifier):
        return None
    name = part.name
    if part.args.get("global_"):
        name = "##" + name
    elif part.args.get("temporary"):
        name = "#" + name
    return f"[{name}]" if part.quoted else name


def _table_text(table: exp.Table) -> str:
    parts = [_part_text(p) for p in table.parts]
    if not parts or any(p is None for p in parts):
        return ""
    return ".".join(parts)


def _quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def tree_events(tree: exp.Expression) -> Iterator[TreeEvent]:
    """Flatten one statement tree into tree events, depth first."""
    for node in tree.dfs():
        if isinstance(node, exp.Table):
            # EXEC targets are procedures, not tables
            if node.find_ancestor(exp.Execute) is not None:
                continue
            text = _table_text(node)
            if text:
                yield EnterTableName(text)
        elif isinstance(node, exp.TableAlias):
            if node.name:
                yield EnterTableAlias(node.name)
        elif isinstance(node, exp.Identifier):
            if not node.quoted and node.name:
                yield EnterIdentifier(node.name)
        elif isinstance(node, exp.Literal):
            yield EnterLiteral(_quote(node.name) if node.args.get("is_string") else node.name)
        elif isinstance(node, exp.National):
            yield EnterLiteral("N" + _quote(node.name))


class SqlEventParser:
    """Parser for T-SQL routine definitions producing tree events."""

    def __init__(self, dialect: Optional[TSQL] = None):
        self.dialect = dialect or RoutineDialect()

    def tokenize(self, source_text: str) -> List[Token]:
        try:
            return self.dialect.tokenize(source_text)
        except TokenError as exc:
            raise UntokenizableSourceError(f"cannot tokenize routine source: {exc}") from exc

    def parse(self, source_text: str) -> Iterator[ParserEvent]:
        """Yield syntax errors and tree events statement by statement, then ``EndOfInput``."""
        sql = _normalize_tsql(source_text)
        tokens = self.tokenize(sql)
        chunks = split_statements(tokens)
        logger.debug("split routine into %d statements", len(chunks))
        for chunk in chunks:
            yield from self._parse_chunk(chunk, sql)
        yield EndOfInput()

    def _parse_chunk(self, chunk: _Chunk, sql: str) -> Iterator[ParserEvent]:
        parser = self.dialect.parser(error_level=ErrorLevel.IGNORE)
        failure: Optional[SqlglotParseError] = None
        try:
            if chunk.condition:
                trees = parser.parse_into(exp.Condition, chunk.tokens, sql)
            else:
                trees = parser.parse(chunk.tokens, sql)
        except SqlglotParseError as exc:
            trees, failure = [], exc

        errors = list(parser.errors)
        if failure is not None and failure not in errors:
            errors.append(failure)
        first = chunk.tokens[0]
        for error in errors:
            for detail in error.errors or [{}]:
                yield SyntaxErrorEvent(
                    line=detail.get("line") or first.line,
                    column=detail.get("col") or first.col,
                    message=detail.get("description") or str(error),
                )

        for tree in trees:
            if tree is None:
                continue
            if isinstance(tree, exp.Command):
                # sqlglot kept the statement as raw text, so its tables are unknown
                logger.debug("unsupported statement at line %d: %s", first.line, tree.name)
                yield SyntaxErrorEvent(
                    line=first.line,
                    column=first.col,
                    message=f"unsupported statement: {tree.name}",
                )
                continue
            yield from tree_events(tree)
