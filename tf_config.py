# Grouping configuration: YAML loading, schema checks and wildcard pattern matching.

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

MAX_CONFIG_SIZE = 1024 * 1024  # 1 MiB
MAX_PATTERN_LENGTH = 100
MAX_FILENAME_LENGTH = 255

# Searched in the current directory when no config file is given.
DEFAULT_CONFIG_FILES = (
    "terraform-file-organize.yaml",
    "terraform-file-organize.yml",
    ".terraform-file-organize.yaml",
    ".terraform-file-organize.yml",
)

RESERVED_NAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)

_TOP_LEVEL_FIELDS = ("groups", "exclude_files")
_GROUP_FIELDS = ("name", "filename", "patterns")
_DEPRECATED_FIELDS = {
    "exclude": "use 'exclude_files' instead",
    "overrides": "no longer supported",
}

_INVALID_FILENAME_CHARS = '/\\:*?"<>|'
_INVALID_PATTERN_CHARS = ("\x00", "\n", "\r", "\t")


class ConfigError(Exception):
    pass


def match_pattern(pattern: str, text: str) -> bool:
    """
    Anchored match where `*` stands for any run of characters (possibly empty).
    A pattern without `*` is an exact comparison.

      aws_s3_*   matches aws_s3_bucket, aws_s3_object
      *_bucket   matches storage_bucket, not bucket_storage
    """
    if "*" not in pattern:
        return pattern == text

    p = 0
    t = 0
    star = -1
    mark = 0
    while t < len(text):
        if p < len(pattern) and pattern[p] != "*" and pattern[p] == text[t]:
            p += 1
            t += 1
        elif p < len(pattern) and pattern[p] == "*":
            star = p
            mark = t
            p += 1
        elif star != -1:
            # backtrack: let the last star swallow one more character
            p = star + 1
            mark += 1
            t = mark
        else:
            return False

    while p < len(pattern) and pattern[p] == "*":
        p += 1
    return p == len(pattern)


@dataclass(frozen=True)
class GroupConfig:
    name: str
    filename: str
    patterns: Tuple[str, ...] = ()

    def matches(self, candidate: str) -> bool:
        return any(match_pattern(p, candidate) for p in self.patterns)


@dataclass(frozen=True)
class Config:
    groups: Tuple[GroupConfig, ...] = ()
    exclude_files: Tuple[str, ...] = ()

    def find_group_for_resource(self, candidate: str) -> Optional[GroupConfig]:
        """First declared group with a pattern matching `candidate`, or None."""
        for group in self.groups:
            if group.matches(candidate):
                return group
        return None

    def is_file_excluded(self, filename: str) -> bool:
        return any(match_pattern(p, filename) for p in self.exclude_files)


# -----------------------------
# Validation

def validate_filename(filename: str) -> None:
    if not filename:
        raise ConfigError("filename cannot be empty")
    if ".." in filename:
        raise ConfigError("filename cannot contain '..'")
    if any(ch in _INVALID_FILENAME_CHARS for ch in filename):
        raise ConfigError("filename contains invalid characters")
    if len(filename) > MAX_FILENAME_LENGTH:
        raise ConfigError(f"filename too long (max {MAX_FILENAME_LENGTH} chars)")
    stem = filename.upper()
    if "." in stem:
        stem = stem[:stem.rindex(".")]
    if stem in RESERVED_NAMES:
        raise ConfigError(f"filename cannot be a system reserved name: {filename}")


def _check_pattern(pattern: str, where: str) -> None:
    if not pattern:
        raise ConfigError(f"{where}: pattern cannot be empty")
    if len(pattern) > MAX_PATTERN_LENGTH:
        raise ConfigError(f"{where}: pattern too long (max {MAX_PATTERN_LENGTH} chars)")
    if any(ch in pattern for ch in _INVALID_PATTERN_CHARS):
        raise ConfigError(f"{where}: pattern '{pattern}' contains invalid characters")


def validate_config(config: Config) -> None:
    """Raise ConfigError on the first problem found; group numbers in messages are 1-based."""
    for i, group in enumerate(config.groups, start=1):
        if not group.name:
            raise ConfigError(f"group {i}: name cannot be empty")
        if not group.filename:
            raise ConfigError(f"group {i} ({group.name}): filename cannot be empty")
        try:
            validate_filename(group.filename)
        except ConfigError as e:
            raise ConfigError(f"group {i} ({group.name}): invalid filename: {e}") from e
        if not group.patterns:
            raise ConfigError(f"group {i} ({group.name}): at least one pattern is required")
        for j, pattern in enumerate(group.patterns, start=1):
            _check_pattern(pattern, f"group {i} ({group.name}), pattern {j}")

    for j, pattern in enumerate(config.exclude_files, start=1):
        _check_pattern(pattern, f"exclude file pattern {j}")

    names = set()
    for i, group in enumerate(config.groups, start=1):
        if group.name in names:
            raise ConfigError(f"duplicate group name '{group.name}' at group {i}")
        names.add(group.name)

    filenames: Dict[str, str] = {}
    for i, group in enumerate(config.groups, start=1):
        if group.filename in filenames:
            raise ConfigError(
                f"duplicate filename '{group.filename}' in group '{group.name}' (group {i}) "
                f"- already used by group '{filenames[group.filename]}'"
            )
        filenames[group.filename] = group.name

    owners: Dict[str, str] = {}
    for group in config.groups:
        for pattern in group.patterns:
            if pattern in owners:
                raise ConfigError(
                    f"pattern '{pattern}' appears in multiple groups: '{owners[pattern]}' and '{group.name}'"
                )
            owners[pattern] = group.name


def _check_fields(raw: Dict[str, Any]) -> None:
    deprecated: List[str] = []
    unknown: List[str] = []
    for key in raw:
        if key in _TOP_LEVEL_FIELDS:
            continue
        if key in _DEPRECATED_FIELDS:
            deprecated.append(f"'{key}' ({_DEPRECATED_FIELDS[key]})")
        else:
            unknown.append(f"'{key}'")

    groups = raw.get("groups")
    if isinstance(groups, list):
        for i, group in enumerate(groups, start=1):
            if isinstance(group, dict):
                unknown.extend(f"'{key}' in group {i}" for key in group if key not in _GROUP_FIELDS)

    messages: List[str] = []
    if deprecated:
        messages.append("deprecated fields found: " + ", ".join(deprecated))
    if unknown:
        messages.append("unknown fields found: " + ", ".join(unknown))
    if messages:
        raise ConfigError("invalid configuration fields: " + "; ".join(messages))


def _string_list(value: Any, where: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{where} must be a list of strings")
    return tuple(value)


def config_from_dict(raw: Optional[Dict[str, Any]]) -> Config:
    """Build and validate a Config from an already-decoded YAML document."""
    if raw is None:
        return Config()
    if not isinstance(raw, dict):
        raise ConfigError("config file must contain a YAML mapping at the top level")
    _check_fields(raw)

    raw_groups = raw.get("groups") or []
    if not isinstance(raw_groups, list):
        raise ConfigError("'groups' must be a list")

    groups: List[GroupConfig] = []
    for i, item in enumerate(raw_groups, start=1):
        if not isinstance(item, dict):
            raise ConfigError(f"group {i} must be a mapping")
        name = item.get("name") or ""
        filename = item.get("filename") or ""
        if not isinstance(name, str) or not isinstance(filename, str):
            raise ConfigError(f"group {i}: name and filename must be strings")
        groups.append(GroupConfig(
            name=name,
            filename=filename,
            patterns=_string_list(item.get("patterns"), f"group {i} ({name}): patterns"),
        ))

    config = Config(
        groups=tuple(groups),
        exclude_files=_string_list(raw.get("exclude_files"), "'exclude_files'"),
    )
    validate_config(config)
    return config


def load_config(path: str) -> Config:
    """
    Load and validate a YAML config file. An empty path gives the empty config.

    Example:

        groups:
          - name: network
            filename: network.tf
            patterns: ["aws_vpc", "aws_subnet*"]
        exclude_files:
          - "*special*.tf"
    """
    if not path:
        return Config()
    path = os.path.abspath(path)

    try:
        st = os.stat(path)
    except OSError as e:
        raise ConfigError(f"failed to access config file: {e}") from e
    if st.st_size > MAX_CONFIG_SIZE:
        raise ConfigError(f"config file too large (max {MAX_CONFIG_SIZE} bytes): {st.st_size} bytes")
    if not os.path.isfile(path):
        raise ConfigError(f"config path must be a regular file: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"failed to read config file: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config file: {e}") from e

    config = config_from_dict(raw)
    logger.debug("Loaded %d group(s) and %d exclude pattern(s) from %s",
                 len(config.groups), len(config.exclude_files), path)
    return config


def find_default_config(directory: str = ".") -> str:
    """Path of the first default config file present in `directory`, or ""."""
    for name in DEFAULT_CONFIG_FILES:
        candidate = os.path.join(directory, name)
        if os.path.isfile(candidate):
            return candidate
    return ""
