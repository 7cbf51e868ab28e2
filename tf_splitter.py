# Block classification: route every parsed block to an output file and build sorted groups.

from __future__ import annotations

import logging
import os
from typing import Callable, Dict, List, Optional, Tuple

from tf_config import Config, RESERVED_NAMES
from tf_struct import Block, BlockGroup, ParsedFiles

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200
UNNAMED = "unnamed"

# Block types whose first label is the "sub type" used for pattern matching.
_SUB_TYPED = ("resource", "data", "module", "provider", "variable", "output")

_UNSAFE_CHARS = ':*?"<>| \x00\\'


class SplitError(Exception):
    pass


class DuplicateResourceError(SplitError):
    def __init__(self, address: str):
        super().__init__(f"duplicate resource name '{address}' found")
        self.address = address


def sanitize_file_name(name: str) -> str:
    """
    Turn an arbitrary label into a safe file name component.

      ../../etc/passwd  ->  passwd
      my bucket:v2      ->  my_bucket_v2
      CON               ->  tf_CON
    """
    if not name:
        return UNNAMED

    cleaned = os.path.basename(os.path.normpath(name))
    cleaned = "".join(
        "_" if ch in _UNSAFE_CHARS or not (32 <= ord(ch) <= 126) else ch
        for ch in cleaned
    )
    while "__" in cleaned:
        cleaned = cleaned.replace("__", "_")
    # no ".." may survive into a file name
    while ".." in cleaned:
        cleaned = cleaned.replace("..", ".")
    cleaned = cleaned.strip("_.")

    if len(cleaned) > MAX_NAME_LENGTH:
        cleaned = cleaned[:MAX_NAME_LENGTH].rstrip("_.")
    if not cleaned:
        cleaned = UNNAMED

    if cleaned.upper() in RESERVED_NAMES:
        cleaned = "tf_" + cleaned
    return cleaned


# -----------------------------
# Default routing
#
# One table maps each block type to its default output file. It serves both
# unmatched blocks and blocks whose configured file is excluded.

def _per_label(prefix: str) -> Callable[[Block], str]:
    def route(block: Block) -> str:
        if block.labels:
            return f"{prefix}__{sanitize_file_name(block.labels[0])}.tf"
        return f"{prefix}.tf"
    return route


def _fixed(filename: str) -> Callable[[Block], str]:
    return lambda block: filename


DEFAULT_ROUTES: Dict[str, Callable[[Block], str]] = {
    "resource": _per_label("resource"),
    "data": _per_label("data"),
    "module": _per_label("module"),
    "provider": _fixed("providers.tf"),
    "variable": _fixed("variables.tf"),
    "output": _fixed("outputs.tf"),
    "locals": _fixed("locals.tf"),
    "terraform": _fixed("terraform.tf"),
}


def default_file_name(block: Block) -> str:
    route = DEFAULT_ROUTES.get(block.type)
    if route is None:
        return f"{sanitize_file_name(block.type)}.tf"
    return route(block)


def sub_type_of(block: Block) -> str:
    if block.type in _SUB_TYPED and block.labels:
        return block.labels[0]
    return ""


def match_candidates(block: Block) -> List[str]:
    """Lookup keys from most to least specific: type.sub.name, type.sub, sub, type."""
    sub_type = sub_type_of(block)
    candidates: List[str] = []
    if sub_type and len(block.labels) > 1:
        candidates.append(f"{block.type}.{sub_type}.{block.labels[1]}")
    if sub_type:
        candidates.append(f"{block.type}.{sub_type}")
        candidates.append(sub_type)
    candidates.append(block.type)
    return candidates


def block_sort_key(block: Block) -> Tuple[str, str, str]:
    key = block.type + "".join("_" + label for label in block.labels)
    return key, block.raw_body, block.leading_comments


def check_duplicates(blocks: List[Block]) -> None:
    seen: Dict[str, str] = {}
    for block in blocks:
        address = block.address()
        if address is None:
            continue
        if address in seen:
            logger.debug("%s declared in both %s and %s", address, seen[address], block.source_file)
            raise DuplicateResourceError(address)
        seen[address] = block.source_file


def sort_groups(groups: List[BlockGroup]) -> List[BlockGroup]:
    for group in groups:
        group.blocks.sort(key=block_sort_key)
    return sorted(groups, key=lambda g: g.file_name)


class Splitter:
    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()

    def file_name_for(self, block: Block) -> str:
        for candidate in match_candidates(block):
            group = self.config.find_group_for_resource(candidate)
            if group is None:
                continue
            if self.config.is_file_excluded(group.filename):
                logger.debug("Group file %s is excluded, using default route for %s",
                             group.filename, candidate)
                return default_file_name(block)
            return group.filename
        return default_file_name(block)

    def build_groups(self, blocks: List[Block]) -> List[BlockGroup]:
        """Bucket blocks by output file, in first-seen order. No sorting happens here."""
        by_file: Dict[str, BlockGroup] = {}
        for block in blocks:
            file_name = self.file_name_for(block)
            group = by_file.get(file_name)
            if group is None:
                group = BlockGroup(
                    block_type=block.type,
                    sub_type=sub_type_of(block),
                    file_name=file_name,
                )
                by_file[file_name] = group
            group.blocks.append(block)
        return list(by_file.values())

    def group_blocks(self, parsed: ParsedFiles) -> List[BlockGroup]:
        blocks = parsed.all_blocks()
        check_duplicates(blocks)
        return sort_groups(self.build_groups(blocks))
