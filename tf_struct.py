# Source model for parsed Terraform files: blocks, bodies, expressions and output groups.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union


# -----------------------------
# Expressions
#
# Only what the structural fallback writer needs is modelled in detail.
# Every expression keeps its exact source text in `source`.

@dataclass
class LiteralExpr:
    """A number, bool or null literal, kept as written (e.g. `42`, `true`, `null`)."""
    source: str


@dataclass
class TemplateExpr:
    """
    A quoted string or heredoc.

    `parts` alternates literal text (str) and interpolated expressions:
      "web-${var.env}"  ->  ["web-", TraversalExpr(var.env)]
    """
    source: str
    parts: List[Union[str, "Expression"]] = field(default_factory=list)
    heredoc: bool = False

    def is_plain(self) -> bool:
        return all(isinstance(p, str) for p in self.parts)

    def literal_value(self) -> str:
        return "".join(p for p in self.parts if isinstance(p, str))


@dataclass
class TupleExpr:
    source: str
    items: List["Expression"] = field(default_factory=list)


@dataclass
class ObjectExpr:
    source: str
    items: List[Tuple["Expression", "Expression"]] = field(default_factory=list)


@dataclass
class TraversalExpr:
    """A variable reference such as `var.region` or `aws_instance.web[0].id`."""
    source: str
    root: str = ""


@dataclass
class FunctionCallExpr:
    source: str
    name: str = ""
    args: List["Expression"] = field(default_factory=list)


@dataclass
class UnknownExpr:
    """Anything else: operators, conditionals, for expressions, splats."""
    source: str


Expression = Union[
    LiteralExpr, TemplateExpr, TupleExpr, ObjectExpr,
    TraversalExpr, FunctionCallExpr, UnknownExpr,
]


# -----------------------------
# Bodies and blocks

@dataclass
class Attribute:
    name: str
    expr: Expression


@dataclass
class Body:
    attributes: List[Attribute] = field(default_factory=list)
    blocks: List["NestedBlock"] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.attributes and not self.blocks


@dataclass
class NestedBlock:
    """A block inside another block (e.g. `ingress { ... }`)."""
    type: str
    labels: List[str] = field(default_factory=list)
    body: Body = field(default_factory=Body)


@dataclass
class Block:
    """
    One top-level declaration.

    `raw_body` is the exact text between the braces, or "" when it could not
    be captured. When non-empty it always wins over `body` on output.
    """
    type: str
    labels: List[str] = field(default_factory=list)
    body: Body = field(default_factory=Body)
    raw_body: str = ""
    leading_comments: str = ""
    source_file: str = ""

    def address(self) -> Optional[str]:
        """Terraform address for resource and data blocks, None otherwise."""
        if len(self.labels) < 2:
            return None
        if self.type == "resource":
            return f"{self.labels[0]}.{self.labels[1]}"
        if self.type == "data":
            return f"data.{self.labels[0]}.{self.labels[1]}"
        return None


@dataclass
class ParsedFile:
    file_name: str
    blocks: List[Block] = field(default_factory=list)


@dataclass
class ParsedFiles:
    files: List[ParsedFile] = field(default_factory=list)

    def all_blocks(self) -> List[Block]:
        out: List[Block] = []
        for f in self.files:
            out.extend(f.blocks)
        return out

    def file_names(self) -> List[str]:
        return [f.file_name for f in self.files]

    def total_blocks(self) -> int:
        return sum(len(f.blocks) for f in self.files)


@dataclass
class BlockGroup:
    block_type: str
    sub_type: str        # "" for label-less types like `locals`
    file_name: str       # sanitized output file name, e.g. "resource__aws_instance.tf"
    blocks: List[Block] = field(default_factory=list)
