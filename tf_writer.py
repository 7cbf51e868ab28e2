# Rendering of block groups to canonical HCL text and writing them to disk.

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from tf_parser import ParseError, Token, TokType, tokenize
from tf_struct import (
    Block,
    BlockGroup,
    Body,
    Expression,
    FunctionCallExpr,
    LiteralExpr,
    ObjectExpr,
    TemplateExpr,
    TraversalExpr,
    TupleExpr,
    UnknownExpr,
)
from tf_template import encode_literal

logger = logging.getLogger(__name__)

INDENT = "  "
FILE_MODE = 0o600
DIR_MODE = 0o750

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


class WriteError(Exception):
    pass


# -----------------------------
# Structural fallback
#
# Used only when a block has no raw body. Static values are copied from
# source; everything else is rebuilt per expression kind.

def is_static(expr: Expression) -> bool:
    if isinstance(expr, LiteralExpr):
        return True
    if isinstance(expr, TemplateExpr):
        return expr.is_plain()
    if isinstance(expr, TupleExpr):
        return all(is_static(item) for item in expr.items)
    if isinstance(expr, ObjectExpr):
        return all(_is_static_key(k) and is_static(v) for k, v in expr.items)
    return False


def _is_static_key(key: Expression) -> bool:
    if isinstance(key, TraversalExpr):
        return bool(_IDENT_RE.match(key.source))
    return isinstance(key, (LiteralExpr, TemplateExpr)) and is_static(key)


def _rebuild_literal(expr: LiteralExpr) -> str:
    return expr.source


def _rebuild_traversal(expr: TraversalExpr) -> str:
    return expr.source


def _rebuild_unsupported(expr: Expression) -> str:
    logger.debug("Replacing unsupported expression with empty string: %s", expr.source)
    return '""'


def _template_part(part) -> str:
    if isinstance(part, str):
        return part
    if isinstance(part, TraversalExpr):
        return "${" + part.source + "}"
    return "${unknown}"


def _rebuild_template(expr: TemplateExpr) -> str:
    if expr.heredoc:
        body = "".join(_template_part(p) for p in expr.parts)
        marker = "EOT"
        while marker in body.split("\n"):
            marker += "_"
        return f"<<{marker}\n{body}{marker}"
    if len(expr.parts) == 1 and isinstance(expr.parts[0], str):
        return f'"{expr.parts[0]}"'
    return '"' + "".join(_template_part(p) for p in expr.parts) + '"'


def _rebuild_tuple(expr: TupleExpr) -> str:
    items = []
    for item in expr.items:
        if isinstance(item, (LiteralExpr, TraversalExpr)) or is_static(item):
            items.append(item.source)
        else:
            items.append('""')
    return "[" + ", ".join(items) + "]"


def _object_key(key: Expression) -> str:
    if isinstance(key, TraversalExpr):
        if _IDENT_RE.match(key.source):
            return key.source
        if key.source.startswith("("):
            return key.source
        return f"({key.source})"
    if isinstance(key, LiteralExpr):
        return key.source
    if isinstance(key, TemplateExpr) and not key.heredoc:
        return _rebuild_template(key)
    return '"unknown"'


def _object_value(value: Expression) -> str:
    if is_static(value):
        return value.source
    if isinstance(value, (LiteralExpr, TemplateExpr, TraversalExpr)):
        return rebuild_expression(value)
    return '""'


def _rebuild_object(expr: ObjectExpr) -> str:
    if not expr.items:
        return "{}"
    lines = ["{"]
    for key, value in expr.items:
        lines.append(f"{_object_key(key)} = {_object_value(value)}")
    lines.append("}")
    return "\n".join(lines)


_REBUILDERS: Dict[type, Callable] = {
    LiteralExpr: _rebuild_literal,
    TemplateExpr: _rebuild_template,
    TupleExpr: _rebuild_tuple,
    ObjectExpr: _rebuild_object,
    TraversalExpr: _rebuild_traversal,
    FunctionCallExpr: _rebuild_unsupported,
    UnknownExpr: _rebuild_unsupported,
}


def rebuild_expression(expr: Expression) -> str:
    if is_static(expr):
        return expr.source
    return _REBUILDERS.get(type(expr), _rebuild_unsupported)(expr)


def render_body(body: Body) -> List[str]:
    """Attributes sorted by name, then nested blocks in source order. Indentation is left to format_hcl."""
    lines: List[str] = []
    for attr in sorted(body.attributes, key=lambda a: a.name):
        lines.append(f"{attr.name} = {rebuild_expression(attr.expr)}")
    for nested in body.blocks:
        lines.append(block_header(nested.type, nested.labels) + " {")
        lines.extend(render_body(nested.body))
        lines.append("}")
    return lines


# -----------------------------
# Blocks and groups

def block_header(block_type: str, labels: List[str]) -> str:
    return " ".join([block_type] + [f'"{encode_literal(label)}"' for label in labels])


def render_block(block: Block) -> str:
    lines: List[str] = []
    if block.leading_comments:
        lines.extend(block.leading_comments.split("\n"))

    header = block_header(block.type, block.labels)
    raw = block.raw_body.strip()
    if raw:
        lines.append(f"{header} {{\n{raw}\n}}")
    else:
        lines.append(header + " {")
        lines.extend(render_body(block.body))
        lines.append("}")
    return "\n".join(lines)


def render_group(group: BlockGroup) -> str:
    return format_hcl("\n\n".join(render_block(b) for b in group.blocks))


# -----------------------------
# Canonical formatting

_OPENERS = (TokType.LBRACE, TokType.LBRACK, TokType.LPAREN)
_CLOSERS = (TokType.RBRACE, TokType.RBRACK, TokType.RPAREN)


@dataclass
class _Line:
    text: str
    tokens: List[Token]
    verbatim: bool = False
    indent: int = 0
    key: Optional[str] = None     # set on single-line `name = value` lines
    value: str = ""


def _finish(lines: List[str]) -> str:
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def _close_one(stack: List[int]):
    if stack:
        stack[-1] -= 1
        if stack[-1] == 0:
            stack.pop()


def format_hcl(text: str) -> str:
    """
    Canonical layout in the style of `terraform fmt`:

      - two-space indentation driven by brackets opened per line
      - `=` aligned across consecutive single-line attributes
      - trailing comments aligned across consecutive lines
      - no trailing whitespace, exactly one final newline

    Heredoc bodies and block comment continuation lines are kept as they are.
    Running it twice gives the same result.
    """
    try:
        tokens = tokenize(text)
    except ParseError as e:
        logger.debug("Skipping canonical formatting: %s", e)
        return _finish([ln.rstrip() for ln in text.split("\n")])

    raw_lines = text.split("\n")
    per_line: List[List[Token]] = [[] for _ in raw_lines]
    verbatim = [False] * len(raw_lines)
    for tok in tokens:
        if tok.type in (TokType.NEWLINE, TokType.EOF):
            continue
        per_line[tok.line - 1].append(tok)
        for k in range(tok.line, tok.line + tok.value.count("\n")):
            verbatim[k] = True

    lines: List[_Line] = []
    stack: List[int] = []
    for idx, raw in enumerate(raw_lines):
        toks = per_line[idx]

        pos = 0
        while pos < len(toks) and toks[pos].type in _CLOSERS and stack:
            _close_one(stack)
            pos += 1
        indent = len(stack)

        pending = 0
        for tok in toks[pos:]:
            if tok.type in _OPENERS:
                pending += 1
            elif tok.type in _CLOSERS:
                if pending:
                    pending -= 1
                else:
                    _close_one(stack)
        if pending:
            stack.append(pending)

        if verbatim[idx]:
            lines.append(_Line(text=raw, tokens=[], verbatim=True))
            continue
        if not toks:
            lines.append(_Line(text="", tokens=[]))
            continue

        line = _Line(text=raw.strip(), tokens=toks, indent=indent)
        if (
            not pending
            and len(toks) > 1
            and toks[0].type in (TokType.IDENT, TokType.STRING)
            and toks[1].type == TokType.EQUAL
        ):
            eq = toks[1].col - 1
            line.key = raw[:eq].strip()
            line.value = raw[eq + 1:].strip()
        lines.append(line)

    _align_assignments(lines)
    _align_comments(lines)

    out: List[str] = []
    for line in lines:
        if line.verbatim:
            out.append(line.text)
        elif not line.text:
            out.append("")
        else:
            out.append((INDENT * line.indent + line.text).rstrip())
    return _finish(out)


def _align_assignments(lines: List[_Line]):
    i = 0
    while i < len(lines):
        if lines[i].key is None:
            i += 1
            continue
        j = i
        while j < len(lines) and lines[j].key is not None:
            j += 1
        width = max(len(ln.key) for ln in lines[i:j])
        for ln in lines[i:j]:
            ln.text = f"{ln.key.ljust(width)} = {ln.value}"
        i = j


def _trailing_comment(line: _Line) -> Optional[str]:
    if line.verbatim or len(line.tokens) < 2:
        return None
    last = line.tokens[-1]
    if last.type != TokType.COMMENT or "\n" in last.value:
        return None
    return last.value.rstrip()


def _align_comments(lines: List[_Line]):
    i = 0
    while i < len(lines):
        if _trailing_comment(lines[i]) is None:
            i += 1
            continue
        j = i
        chain = []
        while j < len(lines):
            comment = _trailing_comment(lines[j])
            if comment is None or not lines[j].text.rstrip().endswith(comment):
                break
            code = lines[j].text.rstrip()[:-len(comment)].rstrip()
            chain.append((lines[j], code, comment))
            j += 1
        if chain:
            width = max(len(INDENT * ln.indent + code) for ln, code, _ in chain)
            for ln, code, comment in chain:
                pad = width - len(INDENT * ln.indent)
                ln.text = f"{code.ljust(pad)} {comment}"
            i = j
        else:
            i += 1


# -----------------------------
# Writer

class Writer:
    def __init__(self, output_dir: str, dry_run: bool = False):
        self.output_dir = output_dir
        self.dry_run = dry_run
        self.written: List[str] = []
        self.unchanged: List[str] = []

    def write_groups(self, groups: List[BlockGroup]) -> None:
        if not self.dry_run:
            try:
                os.makedirs(self.output_dir, mode=DIR_MODE, exist_ok=True)
            except OSError as e:
                raise WriteError(f"failed to create output directory: {e}") from e

        for group in groups:
            try:
                self.write_group(group)
            except OSError as e:
                raise WriteError(f"failed to write group {group.file_name}: {e}") from e

    def write_group(self, group: BlockGroup) -> None:
        path = os.path.join(self.output_dir, group.file_name)

        if self.dry_run:
            logger.info("Would create file: %s", path)
            logger.info("  Block type: %s", group.block_type)
            if group.sub_type:
                logger.info("  Sub type: %s", group.sub_type)
            logger.info("  Number of blocks: %d", len(group.blocks))
            logger.info("")
            return

        content = render_group(group).encode("utf-8")
        try:
            with open(path, "rb") as f:
                existing: Optional[bytes] = f.read()
        except FileNotFoundError:
            existing = None

        if existing == content:
            # identical output, leave the file (and its mtime) alone
            self.unchanged.append(path)
            logger.debug("Unchanged: %s", path)
            return

        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        self.written.append(path)
        logger.info("Created file: %s", path)
