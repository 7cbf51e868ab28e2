# HCL template scanning: split quoted strings and heredoc bodies into literal text and ${...} parts.

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Union


class TemplateParseError(Exception):
    pass


@dataclass
class Interpolation:
    """
    The inside of one `${ ... }` (or `%{ ... }` when `directive` is set),
    with `~` strip markers removed.
    """
    source: str
    directive: bool = False


TemplatePart = Union[str, Interpolation]

_SIMPLE_ESCAPES = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    '"': '"',
    "\\": "\\",
}


class TemplateScanner:
    def __init__(self, text: str, pos: int = 0):
        self.text = text
        self.n = len(text)
        self.i = pos

    def peek(self, offset: int = 0) -> str:
        j = self.i + offset
        return self.text[j] if j < self.n else ''

    def advance(self) -> str:
        ch = self.peek()
        if ch:
            self.i += 1
        return ch

    def _at_escaped_marker(self) -> bool:
        return self.text.startswith("$${", self.i) or self.text.startswith("%%{", self.i)

    def _at_marker(self) -> bool:
        return self.peek() in ("$", "%") and self.peek(1) == "{"

    def scan_quoted(self) -> List[TemplatePart]:
        """
        Scan a quoted template starting at the opening quote. Literal parts are
        kept in source form (escapes untouched) so they can be written back as-is.

          "web-${var.env}"  ->  ['web-', Interpolation('var.env')]
        """
        if self.advance() != '"':
            raise TemplateParseError(f"Expected '\"' at pos {self.i - 1}")
        parts: List[TemplatePart] = []
        buf: List[str] = []
        while True:
            ch = self.peek()
            if not ch:
                raise TemplateParseError("Unterminated string")
            if ch == "\n":
                raise TemplateParseError("Newline inside quoted string")
            if ch == '"':
                self.advance()
                break
            if ch == "\\":
                buf.append(self.advance())
                nxt = self.advance()
                if not nxt:
                    raise TemplateParseError("Unterminated escape sequence")
                buf.append(nxt)
                continue
            if self._at_escaped_marker():
                buf.append(self.text[self.i:self.i + 3])
                self.i += 3
                continue
            if self._at_marker():
                if buf:
                    parts.append("".join(buf))
                    buf = []
                parts.append(self.scan_interpolation())
                continue
            buf.append(self.advance())
        if buf:
            parts.append("".join(buf))
        return parts

    def scan_body(self) -> List[TemplatePart]:
        """Scan the rest of the text as an unquoted template (heredoc body)."""
        parts: List[TemplatePart] = []
        buf: List[str] = []
        while self.peek():
            if self._at_escaped_marker():
                buf.append(self.text[self.i:self.i + 3])
                self.i += 3
                continue
            if self._at_marker():
                if buf:
                    parts.append("".join(buf))
                    buf = []
                parts.append(self.scan_interpolation())
                continue
            buf.append(self.advance())
        if buf:
            parts.append("".join(buf))
        return parts

    def scan_interpolation(self) -> Interpolation:
        directive = self.peek() == "%"
        self.i += 2  # ${ or %{
        start = self.i
        depth = 1
        while True:
            ch = self.peek()
            if not ch:
                raise TemplateParseError(f"Unclosed interpolation starting at pos {start - 2}")
            if ch == '"':
                # nested string, e.g. ${lookup(var.tags, "Name")}
                self.scan_quoted()
                continue
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    inner = self.text[start:self.i]
                    self.i += 1
                    break
            self.i += 1

        inner = inner.strip()
        if inner.startswith("~"):
            inner = inner[1:]
        if inner.endswith("~"):
            inner = inner[:-1]
        return Interpolation(source=inner.strip(), directive=directive)


def skip_quoted(text: str, pos: int) -> int:
    """Return the offset just past the quoted template that starts at `pos`."""
    scanner = TemplateScanner(text, pos)
    scanner.scan_quoted()
    return scanner.i


def try_scan_template(text: str, quoted: bool = True) -> List[TemplatePart]:
    try:
        scanner = TemplateScanner(text)
        return scanner.scan_quoted() if quoted else scanner.scan_body()
    except TemplateParseError:
        # Fallback: keep the raw text as a single literal part
        return [text]


def decode_literal(literal: str) -> str:
    """Decode the escape sequences of a literal template part (used for block labels)."""
    out: List[str] = []
    i = 0
    n = len(literal)
    while i < n:
        ch = literal[i]
        if ch == "\\" and i + 1 < n:
            nxt = literal[i + 1]
            if nxt in _SIMPLE_ESCAPES:
                out.append(_SIMPLE_ESCAPES[nxt])
                i += 2
                continue
            if nxt == "u" and i + 6 <= n:
                try:
                    out.append(chr(int(literal[i + 2:i + 6], 16)))
                    i += 6
                    continue
                except ValueError:
                    pass
            if nxt == "U" and i + 10 <= n:
                try:
                    out.append(chr(int(literal[i + 2:i + 10], 16)))
                    i += 10
                    continue
                except ValueError:
                    pass
            out.append(ch)
            i += 1
            continue
        if literal.startswith("$${", i) or literal.startswith("%%{", i):
            out.append(literal[i + 1:i + 3])
            i += 3
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def encode_literal(value: str) -> str:
    """Inverse of decode_literal for the characters that must be escaped in a quoted string."""
    out = value.replace("\\", "\\\\").replace('"', '\\"')
    out = out.replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t")
    return out.replace("${", "$${").replace("%{", "%%{")
