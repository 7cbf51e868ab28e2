# Path and flag checks applied before an organize run.

import os

from tf_config import MAX_CONFIG_SIZE

SYSTEM_DIRS = ("/etc", "/bin", "/sbin", "/usr/bin", "/usr/sbin", "/sys", "/proc")


class ValidationError(Exception):
    pass


def _under(path: str, root: str) -> bool:
    return path == root or path.startswith(root + os.sep)


def is_safe_path(path: str) -> bool:
    """False for empty paths and anything inside a system directory."""
    if not path:
        return False
    absolute = os.path.abspath(path)
    return not any(_under(absolute, d) for d in SYSTEM_DIRS)


def validate_path(path: str) -> None:
    if not path:
        raise ValidationError("path cannot be empty")
    if not is_safe_path(path):
        raise ValidationError(f"access to system directory not allowed: {path}")


def validate_input_path(path: str) -> None:
    validate_path(path)
    try:
        os.lstat(path)
    except OSError as e:
        raise ValidationError(f"path does not exist or is not accessible: {path}") from e
    if os.path.islink(path):
        raise ValidationError(f"symbolic links are not allowed for security reasons: {path}")
    if not (os.path.isdir(path) or os.path.isfile(path)):
        raise ValidationError(f"path must be a regular file or directory: {path}")


def validate_output_path(path: str) -> None:
    if not path:
        return  # defaults to the input directory
    try:
        validate_path(path)
    except ValidationError as e:
        raise ValidationError(f"invalid output directory: {e}") from e
    if os.path.exists(path) and not os.path.isdir(path):
        raise ValidationError(f"output path exists but is not a directory: {path}")


def validate_config_path(path: str) -> None:
    if not path:
        return
    try:
        validate_path(path)
    except ValidationError as e:
        raise ValidationError(f"invalid config file path: {e}") from e
    if not os.path.exists(path):
        raise ValidationError(f"config file does not exist: {path}")
    if not os.path.isfile(path):
        raise ValidationError(f"config path must be a regular file: {path}")
    if os.path.getsize(path) > MAX_CONFIG_SIZE:
        raise ValidationError(f"config file too large (max {MAX_CONFIG_SIZE} bytes): {path}")


def validate_flag_combination(output_dir: str, recursive: bool) -> None:
    if output_dir and recursive:
        raise ValidationError(
            "cannot use --output-dir (-o) with --recursive (-r): "
            "combining multiple directories into one output is not supported"
        )
