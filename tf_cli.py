"""CLI tool to organize Terraform files by block type."""

import argparse
import logging
import platform
import sys
from importlib.metadata import PackageNotFoundError, version as package_version
from typing import List, Optional

from tf_config import Config, ConfigError, load_config
from tf_organize import OrganizeError, OrganizeFilesUseCase, OrganizeRequest
from tf_parser import ParseError
from tf_splitter import SplitError
from tf_validation import (
    ValidationError,
    validate_config_path,
    validate_flag_combination,
    validate_input_path,
    validate_output_path,
)
from tf_writer import WriteError

PACKAGE_NAME = "tf-file-organize"

_RUN_ERRORS = (ConfigError, OrganizeError, ParseError, SplitError, WriteError, ValidationError)


def get_version() -> str:
    try:
        return package_version(PACKAGE_NAME)
    except PackageNotFoundError:
        return "dev"


def _add_organize_args(sub: argparse.ArgumentParser, with_backup: bool):
    sub.add_argument("input_path", help="Terraform file or directory to organize")
    sub.add_argument("-o", "--output-dir", default="", help="Output directory (default: the input directory)")
    sub.add_argument("-c", "--config", default="", help="Configuration file (YAML)")
    sub.add_argument(
        "-r", "--recursive",
        action="store_true",
        help="Process directories recursively",
    )
    if with_backup:
        sub.add_argument(
            "--backup",
            action="store_true",
            help="Move source files to backup/ instead of deleting them",
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PACKAGE_NAME,
        description="Organize Terraform files by resource type.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subs = parser.add_subparsers(dest="command", required=True)

    run = subs.add_parser("run", help="Organize files and write the result")
    _add_organize_args(run, with_backup=True)

    plan = subs.add_parser("plan", help="Show what would be written without touching any file")
    _add_organize_args(plan, with_backup=False)

    check = subs.add_parser("validate-config", help="Validate a configuration file")
    check.add_argument("config_file", help="Configuration file (YAML)")

    subs.add_parser("version", help="Show version information")
    return parser


def run_organize(args: argparse.Namespace, dry_run: bool) -> None:
    output_dir = args.output_dir
    recursive = args.recursive
    try:
        validate_input_path(args.input_path)
    except ValidationError as e:
        raise ValidationError(f"invalid input path: {e}") from e
    validate_output_path(output_dir)
    validate_config_path(args.config)
    validate_flag_combination(output_dir, recursive)

    req = OrganizeRequest(
        input_path=args.input_path,
        output_dir=output_dir,
        config_file=args.config,
        dry_run=dry_run,
        recursive=recursive,
        backup=getattr(args, "backup", False),
    )
    OrganizeFilesUseCase().execute(req)


def print_config_summary(config: Config) -> None:
    print("\nConfiguration Summary:")
    print(f"  Groups: {len(config.groups)}")
    print(f"  Exclude File Patterns: {len(config.exclude_files)}")

    if config.groups:
        print("\nGroups:")
        for i, group in enumerate(config.groups, start=1):
            print(f"  {i}. {group.name} -> {group.filename}")
            for pattern in group.patterns:
                print(f"     - {pattern}")

    if config.exclude_files:
        print("\nExclude File Patterns:")
        for i, pattern in enumerate(config.exclude_files, start=1):
            print(f"  {i}. {pattern}")


def run_validate_config(path: str) -> None:
    validate_config_path(path)
    print(f"Validating configuration file: {path}")
    config = load_config(path)
    print_config_summary(config)
    print("Configuration is valid!")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        stream=sys.stdout,
    )

    if args.command == "version":
        print(f"{PACKAGE_NAME} version {get_version()}")
        print(f"  Python: {platform.python_version()}")
        print(f"  Platform: {sys.platform}")
        return 0

    if args.command == "validate-config":
        try:
            run_validate_config(args.config_file)
        except (ConfigError, ValidationError) as e:
            raise SystemExit(f"Configuration validation failed: {e}")
        return 0

    try:
        run_organize(args, dry_run=args.command == "plan")
    except _RUN_ERRORS as e:
        raise SystemExit(f"Error: {e}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
