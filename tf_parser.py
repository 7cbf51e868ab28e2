# Terraform HCL parser: tokenizer, block/body/expression parser and verbatim source capture.

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, List, Optional

from tf_struct import (
    Attribute,
    Block,
    Body,
    Expression,
    FunctionCallExpr,
    LiteralExpr,
    NestedBlock,
    ObjectExpr,
    ParsedFile,
    TemplateExpr,
    TraversalExpr,
    TupleExpr,
    UnknownExpr,
)
from tf_template import TemplatePart, TemplateParseError, decode_literal, skip_quoted, try_scan_template

logger = logging.getLogger(__name__)


class ParseError(Exception):
    pass


# -----------------------------
# Tokenization

class TokType(Enum):
    IDENT    = auto()
    NUMBER   = auto()
    STRING   = auto()   # "..." including quotes
    HEREDOC  = auto()   # <<EOF ... EOF including markers
    LBRACE   = auto()   # {
    RBRACE   = auto()   # }
    LBRACK   = auto()   # [
    RBRACK   = auto()   # ]
    LPAREN   = auto()   # (
    RPAREN   = auto()   # )
    EQUAL    = auto()   # =
    COMMA    = auto()   # ,
    DOT      = auto()   # .
    COLON    = auto()   # :
    DCOLON   = auto()   # ::
    QUESTION = auto()   # ?
    ELLIPSIS = auto()   # ...
    FATARROW = auto()   # =>
    OP       = auto()   # arithmetic, comparison and logic operators
    COMMENT  = auto()
    NEWLINE  = auto()
    EOF      = auto()


@dataclass
class Token:
    type: TokType
    value: str
    line: int
    col: int
    start: int = 0   # offset of the first character
    end: int = 0     # offset just past the last character


_SINGLE_CHAR = {
    "{": TokType.LBRACE,
    "}": TokType.RBRACE,
    "[": TokType.LBRACK,
    "]": TokType.RBRACK,
    "(": TokType.LPAREN,
    ")": TokType.RPAREN,
    ",": TokType.COMMA,
    "?": TokType.QUESTION,
    ".": TokType.DOT,
    ":": TokType.COLON,
    "=": TokType.EQUAL,
}

_TWO_CHAR_OPS = ("==", "!=", "<=", ">=", "&&", "||")
_ONE_CHAR_OPS = "+-*/%<>!"


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_-"


def _scan_number(text: str, i: int) -> int:
    n = len(text)
    while i < n and text[i].isdigit():
        i += 1
    if i + 1 < n and text[i] == "." and text[i + 1].isdigit():
        i += 1
        while i < n and text[i].isdigit():
            i += 1
    if i < n and text[i] in "eE":
        j = i + 1
        if j < n and text[j] in "+-":
            j += 1
        if j < n and text[j].isdigit():
            i = j
            while i < n and text[i].isdigit():
                i += 1
    return i


def _is_heredoc_start(text: str, i: int) -> bool:
    if not text.startswith("<<", i):
        return False
    j = i + 2
    if j < len(text) and text[j] == "-":
        j += 1
    return j < len(text) and (text[j].isalpha() or text[j] == "_")


def _scan_heredoc(text: str, i: int, line: int) -> int:
    """
    Return the offset just past the closing marker of the heredoc at `i`.

        <<EOT          <<-EOT
        hello            hello
        EOT              EOT
    """
    n = len(text)
    j = i + 2
    if text[j] == "-":
        j += 1
    k = j
    while k < n and _is_ident_char(text[k]):
        k += 1
    marker = text[j:k]

    eol = text.find("\n", k)
    if eol == -1 or text[k:eol].strip():
        raise ParseError(f"Heredoc marker <<{marker} must be followed by a newline at line {line}")

    pos = eol + 1
    while pos <= n:
        nl = text.find("\n", pos)
        line_end = n if nl == -1 else nl
        if text[pos:line_end].strip() == marker:
            return line_end
        if nl == -1:
            break
        pos = nl + 1
    raise ParseError(f"Unterminated heredoc <<{marker} starting at line {line}")


def tokenize(text: str) -> List[Token]:
    """
    Tokenizer for HCL native syntax.

    Quoted strings and heredocs each become a single token covering their
    full source (quotes and markers included), so template contents never
    leak into bracket matching.
    """
    tokens: List[Token] = []
    i = 0
    line = 1
    col = 1
    n = len(text)

    def emit(tt: TokType, end: int):
        nonlocal i, line, col
        value = text[i:end]
        tokens.append(Token(tt, value, line, col, i, end))
        newlines = value.count("\n")
        if newlines:
            line += newlines
            col = len(value) - value.rfind("\n")
        else:
            col += len(value)
        i = end

    while i < n:
        ch = text[i]

        if ch == "\n":
            emit(TokType.NEWLINE, i + 1)
            continue

        if ch in " \t\r\ufeff":
            i += 1
            col += 1
            continue

        # comments
        if ch == "#" or text.startswith("//", i):
            j = text.find("\n", i)
            emit(TokType.COMMENT, n if j == -1 else j)
            continue
        if text.startswith("/*", i):
            j = text.find("*/", i + 2)
            if j == -1:
                raise ParseError(f"Unterminated block comment at line {line}, col {col}")
            emit(TokType.COMMENT, j + 2)
            continue

        if _is_heredoc_start(text, i):
            emit(TokType.HEREDOC, _scan_heredoc(text, i, line))
            continue

        if ch == '"':
            try:
                end = skip_quoted(text, i)
            except TemplateParseError as e:
                raise ParseError(f"{e} at line {line}, col {col}") from e
            emit(TokType.STRING, end)
            continue

        if ch.isdigit():
            emit(TokType.NUMBER, _scan_number(text, i))
            continue

        if ch.isalpha() or ch == "_":
            j = i + 1
            while j < n and _is_ident_char(text[j]):
                j += 1
            emit(TokType.IDENT, j)
            continue

        if text.startswith("...", i):
            emit(TokType.ELLIPSIS, i + 3)
            continue
        if text.startswith("=>", i):
            emit(TokType.FATARROW, i + 2)
            continue
        if text.startswith("::", i):
            emit(TokType.DCOLON, i + 2)
            continue
        if text[i:i + 2] in _TWO_CHAR_OPS:
            emit(TokType.OP, i + 2)
            continue
        if ch in _SINGLE_CHAR:
            emit(_SINGLE_CHAR[ch], i + 1)
            continue
        if ch in _ONE_CHAR_OPS:
            emit(TokType.OP, i + 1)
            continue

        raise ParseError(f"Unexpected character {ch!r} at line {line}, col {col}")

    tokens.append(Token(TokType.EOF, "", line, col, n, n))
    return tokens


# -----------------------------
# Source capture

def extract_raw_body(text: str, start: int, end: int) -> str:
    """Text between a block's braces, or "" when the offsets do not describe a valid range."""
    if 0 <= start <= end <= len(text):
        return text[start:end]
    return ""


def extract_leading_comments(text: str, block_start: int, prev_end: int) -> str:
    """
    Collect the `#` / `//` comment lines directly above a block.

    Walks upward from the block keyword towards the previous block's closing
    brace. Blank lines between comments are kept, blank lines at either end of
    the run are dropped, and the first non-comment line stops the walk.
    """
    if not (0 <= prev_end <= block_start <= len(text)):
        return ""
    lines = text[prev_end:block_start].split("\n")
    lines.pop()  # indentation in front of the block keyword
    if prev_end > 0 and lines:
        lines.pop(0)  # rest of the previous block's closing line

    collected: List[str] = []
    for ln in reversed(lines):
        stripped = ln.strip()
        if not stripped or stripped.startswith("#") or stripped.startswith("//"):
            collected.append(stripped)
            continue
        break
    collected.reverse()

    while collected and not collected[0]:
        collected.pop(0)
    while collected and not collected[-1]:
        collected.pop()
    return "\n".join(collected)


def _heredoc_body(source: str) -> str:
    first_nl = source.find("\n")
    flush = source.startswith("<<-")
    lines = source[first_nl + 1:].split("\n")[:-1]  # drop the closing marker line
    if flush:
        indents = [len(ln) - len(ln.lstrip()) for ln in lines if ln.strip()]
        trim = min(indents) if indents else 0
        lines = [ln[trim:] for ln in lines]
    return "".join(ln + "\n" for ln in lines)


# -----------------------------
# Parser

# Known top-level block types and the number of labels each takes.
BLOCK_LABELS: Dict[str, int] = {
    "terraform": 0,
    "provider": 1,
    "variable": 1,
    "locals": 0,
    "data": 2,
    "resource": 2,
    "module": 1,
    "output": 1,
}

_BINARY_PRECEDENCE: Dict[str, int] = {
    "||": 1,
    "&&": 2,
    "==": 3, "!=": 3,
    "<": 4, ">": 4, "<=": 4, ">=": 4,
    "+": 5, "-": 5,
    "*": 6, "/": 6, "%": 6,
}


class Parser:
    def __init__(self, tokens: List[Token], text: str, keep_source: bool = True):
        # comments only matter for leading-comment capture, which works on the text
        self.tokens = [t for t in tokens if t.type != TokType.COMMENT]
        self.text = text
        self.keep_source = keep_source
        self.pos = 0
        self._last_end = 0
        # True while inside (...), [...], {...} expressions where newlines are insignificant
        self._nl_ignore: List[bool] = []

    # basic utilities
    def _ignoring_newlines(self) -> bool:
        return bool(self._nl_ignore) and self._nl_ignore[-1]

    def _push_newlines(self, ignore: bool):
        self._nl_ignore.append(ignore)

    def _pop_newlines(self):
        self._nl_ignore.pop()

    def peek(self, offset: int = 0) -> Token:
        ignoring = self._ignoring_newlines()
        if ignoring:
            while self.tokens[self.pos].type == TokType.NEWLINE:
                self.pos += 1
        idx = self.pos
        for _ in range(offset):
            if self.tokens[idx].type == TokType.EOF:
                break
            idx += 1
            while ignoring and self.tokens[idx].type == TokType.NEWLINE:
                idx += 1
        return self.tokens[idx]

    def _error(self, tok: Token, msg: str) -> ParseError:
        return ParseError(f"{msg} at line {tok.line}, col {tok.col}")

    def eat(self, ttype: TokType, value: Optional[str] = None) -> Token:
        tok = self.peek()
        if tok.type != ttype or (value is not None and tok.value != value):
            want = repr(value) if value is not None else ttype.name
            raise self._error(tok, f"Expected {want}, got {tok.type.name} ({tok.value!r})")
        self.pos += 1
        self._last_end = tok.end
        return tok

    def maybe_eat(self, ttype: TokType, value: Optional[str] = None) -> Optional[Token]:
        tok = self.peek()
        if tok.type == ttype and (value is None or tok.value == value):
            return self.eat(ttype, value)
        return None

    def skip_newlines(self):
        while self.peek().type == TokType.NEWLINE:
            self.pos += 1

    def _source_from(self, start: int) -> str:
        return self.text[start:self._last_end]

    def _end_of_item(self):
        """Attributes and blocks end at a newline, the end of the file or the enclosing `}`."""
        tok = self.peek()
        if tok.type not in (TokType.NEWLINE, TokType.EOF, TokType.RBRACE):
            raise self._error(tok, f"Unexpected {tok.type.name} ({tok.value!r}), expected newline")

    # top-level file
    def parse_file(self, file_name: str = "") -> List[Block]:
        blocks: List[Block] = []
        prev_end = 0
        self.skip_newlines()

        while self.peek().type != TokType.EOF:
            name_tok = self.eat(TokType.IDENT)

            if self.maybe_eat(TokType.EQUAL):
                self.parse_expression()
                self._end_of_item()
                logger.warning(
                    "Warning: skipping top-level attribute '%s' in %s (line %d)",
                    name_tok.value, file_name or "<input>", name_tok.line,
                )
                self.skip_newlines()
                continue

            labels = self._parse_labels()
            expected = BLOCK_LABELS.get(name_tok.value)
            if expected is None:
                logger.debug("Keeping unrecognized block type '%s' in %s", name_tok.value, file_name)
            elif len(labels) != expected:
                raise self._error(
                    name_tok,
                    f"Block '{name_tok.value}' expects {expected} label(s), got {len(labels)}",
                )

            open_tok = self.eat(TokType.LBRACE)
            body = self.parse_body()
            close_tok = self.eat(TokType.RBRACE)
            self._end_of_item()

            block = Block(type=name_tok.value, labels=labels, body=body, source_file=file_name)
            if self.keep_source:
                block.raw_body = extract_raw_body(self.text, open_tok.end, close_tok.start)
                block.leading_comments = extract_leading_comments(self.text, name_tok.start, prev_end)
            prev_end = close_tok.end
            blocks.append(block)
            self.skip_newlines()

        return blocks

    def _parse_labels(self) -> List[str]:
        labels: List[str] = []
        while self.peek().type in (TokType.STRING, TokType.IDENT):
            tok = self.peek()
            if tok.type == TokType.IDENT:
                labels.append(self.eat(TokType.IDENT).value)
                continue
            self.eat(TokType.STRING)
            parts = try_scan_template(tok.value)
            if any(not isinstance(p, str) for p in parts):
                raise self._error(tok, "Block labels cannot contain template sequences")
            labels.append(decode_literal("".join(parts)))
        return labels

    # block bodies
    def parse_body(self) -> Body:
        """Parse attributes and nested blocks up to (not including) the closing `}`."""
        body = Body()
        self._push_newlines(False)
        self.skip_newlines()

        while self.peek().type != TokType.RBRACE:
            if self.peek().type == TokType.EOF:
                raise self._error(self.peek(), "Unexpected end of file inside block body")

            name = self.eat(TokType.IDENT).value
            if self.maybe_eat(TokType.EQUAL):
                body.attributes.append(Attribute(name=name, expr=self.parse_expression()))
            else:
                labels = self._parse_labels()
                self.eat(TokType.LBRACE)
                nested = self.parse_body()
                self.eat(TokType.RBRACE)
                body.blocks.append(NestedBlock(type=name, labels=labels, body=nested))
            self._end_of_item()
            self.skip_newlines()

        self._pop_newlines()
        return body

    # expressions
    def parse_expression(self) -> Expression:
        start = self.peek().start
        cond = self._parse_binary(1)
        if self.maybe_eat(TokType.QUESTION):
            self.parse_expression()
            self.eat(TokType.COLON)
            self.parse_expression()
            return UnknownExpr(self._source_from(start))
        return cond

    def parse_standalone_expression(self) -> Expression:
        """Parse the whole token stream as one expression (template interpolations)."""
        self._push_newlines(True)
        expr = self.parse_expression()
        tok = self.peek()
        if tok.type != TokType.EOF:
            raise self._error(tok, f"Unexpected {tok.type.name} ({tok.value!r}) after expression")
        self._pop_newlines()
        return expr

    def _parse_binary(self, min_prec: int) -> Expression:
        start = self.peek().start
        left = self._parse_unary()
        while True:
            tok = self.peek()
            prec = _BINARY_PRECEDENCE.get(tok.value) if tok.type == TokType.OP else None
            if prec is None or prec < min_prec:
                break
            self.eat(TokType.OP)
            self._parse_binary(prec + 1)
            left = UnknownExpr(self._source_from(start))
        return left

    def _parse_unary(self) -> Expression:
        tok = self.peek()
        if tok.type == TokType.OP and tok.value in ("-", "!"):
            self.eat(TokType.OP)
            operand = self._parse_unary()
            source = self._source_from(tok.start)
            if tok.value == "-" and isinstance(operand, LiteralExpr) and operand.source[:1].isdigit():
                return LiteralExpr(source)
            return UnknownExpr(source)
        return self._parse_postfix()

    def _parse_postfix(self) -> Expression:
        start = self.peek().start
        expr = self._parse_primary()

        while True:
            tok = self.peek()
            static_step = False
            if tok.type == TokType.DOT:
                self.eat(TokType.DOT)
                nxt = self.peek()
                if nxt.type in (TokType.IDENT, TokType.NUMBER):
                    self.eat(nxt.type)
                    static_step = True
                elif nxt.type == TokType.OP and nxt.value == "*":
                    self.eat(TokType.OP)
                else:
                    raise self._error(nxt, "Expected attribute name after '.'")
            elif tok.type == TokType.LBRACK:
                self.eat(TokType.LBRACK)
                self._push_newlines(True)
                if self.peek().type == TokType.OP and self.peek().value == "*":
                    self.eat(TokType.OP)
                else:
                    key = self.parse_expression()
                    static_step = isinstance(key, LiteralExpr) or (
                        isinstance(key, TemplateExpr) and key.is_plain()
                    )
                self._pop_newlines()
                self.eat(TokType.RBRACK)
            else:
                break

            source = self._source_from(start)
            if isinstance(expr, TraversalExpr) and static_step:
                expr = TraversalExpr(source=source, root=expr.root)
            else:
                expr = UnknownExpr(source)

        return expr

    def _parse_primary(self) -> Expression:
        tok = self.peek()

        if tok.type == TokType.NUMBER:
            self.eat(TokType.NUMBER)
            return LiteralExpr(tok.value)

        if tok.type == TokType.STRING:
            self.eat(TokType.STRING)
            return self._template(tok.value, try_scan_template(tok.value))

        if tok.type == TokType.HEREDOC:
            self.eat(TokType.HEREDOC)
            parts = try_scan_template(_heredoc_body(tok.value), quoted=False)
            return self._template(tok.value, parts, heredoc=True)

        if tok.type == TokType.IDENT:
            if tok.value in ("true", "false", "null"):
                self.eat(TokType.IDENT)
                return LiteralExpr(tok.value)
            nxt = self.peek(1)
            if nxt.type in (TokType.LPAREN, TokType.DCOLON) and nxt.line == tok.line:
                return self._parse_call()
            self.eat(TokType.IDENT)
            return TraversalExpr(source=tok.value, root=tok.value)

        if tok.type == TokType.LBRACK:
            return self._parse_tuple()

        if tok.type == TokType.LBRACE:
            return self._parse_object()

        if tok.type == TokType.LPAREN:
            self.eat(TokType.LPAREN)
            self._push_newlines(True)
            inner = self.parse_expression()
            self._pop_newlines()
            self.eat(TokType.RPAREN)
            if isinstance(inner, TraversalExpr):
                return TraversalExpr(source=self._source_from(tok.start), root=inner.root)
            return inner

        raise self._error(tok, f"Expected expression, got {tok.type.name} ({tok.value!r})")

    def _parse_call(self) -> FunctionCallExpr:
        start = self.peek().start
        name_parts = [self.eat(TokType.IDENT).value]
        while self.maybe_eat(TokType.DCOLON):
            name_parts.append(self.eat(TokType.IDENT).value)

        self.eat(TokType.LPAREN)
        self._push_newlines(True)
        args: List[Expression] = []
        while self.peek().type != TokType.RPAREN:
            args.append(self.parse_expression())
            self.maybe_eat(TokType.ELLIPSIS)
            if not self.maybe_eat(TokType.COMMA):
                break
        self._pop_newlines()
        self.eat(TokType.RPAREN)
        return FunctionCallExpr(source=self._source_from(start), name="::".join(name_parts), args=args)

    def _at_for(self) -> bool:
        tok = self.peek()
        return tok.type == TokType.IDENT and tok.value == "for" and self.peek(1).type == TokType.IDENT

    def _parse_for(self, start: int, close: TokType) -> Expression:
        """
        [for v in coll : expr if cond]
        {for k, v in coll : key => value... if cond}
        """
        self.eat(TokType.IDENT, "for")
        self.eat(TokType.IDENT)
        if self.maybe_eat(TokType.COMMA):
            self.eat(TokType.IDENT)
        self.eat(TokType.IDENT, "in")
        self.parse_expression()
        self.eat(TokType.COLON)
        self.parse_expression()
        if close == TokType.RBRACE:
            self.eat(TokType.FATARROW)
            self.parse_expression()
            self.maybe_eat(TokType.ELLIPSIS)
        if self.maybe_eat(TokType.IDENT, "if"):
            self.parse_expression()
        self._pop_newlines()
        self.eat(close)
        return UnknownExpr(self._source_from(start))

    def _parse_tuple(self) -> Expression:
        start = self.eat(TokType.LBRACK).start
        self._push_newlines(True)
        if self._at_for():
            return self._parse_for(start, TokType.RBRACK)

        items: List[Expression] = []
        while self.peek().type != TokType.RBRACK:
            items.append(self.parse_expression())
            if not self.maybe_eat(TokType.COMMA):
                break
        self._pop_newlines()
        self.eat(TokType.RBRACK)
        return TupleExpr(source=self._source_from(start), items=items)

    def _parse_object(self) -> Expression:
        start = self.eat(TokType.LBRACE).start
        self._push_newlines(True)
        if self._at_for():
            return self._parse_for(start, TokType.RBRACE)

        items = []
        while self.peek().type != TokType.RBRACE:
            if self.peek().type == TokType.EOF:
                raise self._error(self.peek(), "Unexpected end of file inside object")
            key = self.parse_expression()
            if not (self.maybe_eat(TokType.EQUAL) or self.maybe_eat(TokType.COLON)):
                tok = self.peek()
                raise self._error(tok, f"Expected '=' or ':' after object key, got {tok.type.name}")
            items.append((key, self.parse_expression()))
            self.maybe_eat(TokType.COMMA)
        self._pop_newlines()
        self.eat(TokType.RBRACE)
        return ObjectExpr(source=self._source_from(start), items=items)

    def _template(self, source: str, raw_parts: List[TemplatePart], heredoc: bool = False) -> TemplateExpr:
        parts: List = []
        for p in raw_parts:
            if isinstance(p, str):
                parts.append(p)
            elif p.directive:
                parts.append(UnknownExpr(p.source))
            else:
                parts.append(_parse_interpolation(p.source))
        return TemplateExpr(source=source, parts=parts, heredoc=heredoc)


def _parse_interpolation(source: str) -> Expression:
    try:
        return parse_expression_text(source)
    except ParseError as err:
        logger.debug("Could not parse interpolation %r: %s", source, err)
        return UnknownExpr(source)


# -----------------------------
# Public entry

def parse_expression_text(text: str) -> Expression:
    return Parser(tokenize(text), text).parse_standalone_expression()


def parse_hcl(text: str, file_name: str = "", keep_source: bool = True) -> ParsedFile:
    """
    Parse one Terraform file's text.

    With keep_source=False blocks carry only the structured body, which forces
    the writer onto its structural fallback.
    """
    try:
        parser = Parser(tokenize(text), text, keep_source=keep_source)
        blocks = parser.parse_file(file_name)
    except ParseError as e:
        if file_name:
            raise ParseError(f"{file_name}: {e}") from e
        raise
    return ParsedFile(file_name=file_name, blocks=blocks)


def parse_file(path: str, keep_source: bool = True) -> ParsedFile:
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(f"failed to read file {path}: {e}") from e
    return parse_hcl(content, file_name=path, keep_source=keep_source)
