# End-to-end organize run: enumerate, parse, classify, write, then clean up stale sources.

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from tf_config import Config, find_default_config, load_config
from tf_parser import ParseError, parse_file
from tf_splitter import Splitter
from tf_struct import BlockGroup, ParsedFile, ParsedFiles
from tf_validation import ValidationError, validate_path
from tf_writer import Writer

logger = logging.getLogger(__name__)

BACKUP_DIR = "backup"

# Files with these prefixes are tool output.
GENERATED_PREFIXES = ("resource__", "data__", "module__")

# Default file names the tool writes.
STANDARD_FILES = ("variables.tf", "outputs.tf", "providers.tf", "terraform.tf", "locals.tf")


class OrganizeError(Exception):
    pass


@dataclass
class OrganizeRequest:
    input_path: str
    output_dir: str = ""
    config_file: str = ""
    dry_run: bool = False
    recursive: bool = False
    backup: bool = False


@dataclass
class OrganizeResult:
    """
    Outcome of one run.

    files_written / files_unchanged list output paths; cleaned_files lists
    the source files that were removed or moved to backup/.
    """
    processed_files: int
    total_blocks: int
    file_groups: int
    output_dir: str
    was_dry_run: bool
    files_written: List[str] = field(default_factory=list)
    files_unchanged: List[str] = field(default_factory=list)
    cleaned_files: List[str] = field(default_factory=list)


def is_generated_name(name: str) -> bool:
    return name.startswith(GENERATED_PREFIXES) or name in STANDARD_FILES


def is_stale_source(path: str, output_dir: str, generated_names: List[str]) -> bool:
    """
    Every block of a parsed source has been written to a generated file, so the
    source is stale unless this run writes it itself. Only files directly inside
    `output_dir` can be written by this run; nested files are always stale.

    An old generated file this run no longer produces (e.g. after a config
    change moved its blocks elsewhere) is stale as well.
    """
    name = os.path.basename(path)
    in_output = os.path.realpath(os.path.dirname(path) or ".") == os.path.realpath(output_dir)
    if in_output and name in generated_names:
        return False
    if in_output and is_generated_name(name):
        logger.debug("Generated file no longer produced: %s", path)
    return True


class OrganizeFilesUseCase:
    """
    Organizes Terraform files.

    Steps:
    1. Load config (explicit path, default file in cwd, or empty)
    2. Enumerate and parse .tf files, skipping the ones that cannot be read
    3. Classify all blocks together into output groups
    4. Write groups (unchanged files are left alone)
    5. Remove or back up stale sources when writing in place

    Example:
        >>> result = OrganizeFilesUseCase().execute(OrganizeRequest("infra/"))
    """

    def __init__(
        self,
        parser: Optional[Callable[[str], ParsedFile]] = None,
        splitter: Optional[Splitter] = None,
        writer: Optional[Writer] = None,
        config_loader: Optional[Callable[[str], Config]] = None,
    ):
        self.parser = parser or parse_file
        self.splitter = splitter
        self.writer = writer
        self.config_loader = config_loader or load_config

    def execute(self, req: OrganizeRequest) -> OrganizeResult:
        if not os.path.exists(req.input_path):
            raise OrganizeError(f"failed to access input path: {req.input_path}")
        is_dir = os.path.isdir(req.input_path)
        input_dir = req.input_path if is_dir else os.path.dirname(req.input_path) or "."
        output_dir = req.output_dir or input_dir

        config = self._load_config(req.config_file)
        parsed = self._parse_input(req.input_path, is_dir, req.recursive)

        total = parsed.total_blocks()
        if total == 0:
            logger.info("No Terraform blocks found to organize")
            return OrganizeResult(
                processed_files=len(parsed.files),
                total_blocks=0,
                file_groups=0,
                output_dir=output_dir,
                was_dry_run=req.dry_run,
            )

        splitter = self.splitter or Splitter(config)
        groups = splitter.group_blocks(parsed)
        logger.info("Organized into %d file groups", len(groups))

        writer = self.writer or Writer(output_dir, req.dry_run)
        writer.write_groups(groups)

        same_dir = os.path.realpath(output_dir) == os.path.realpath(input_dir)
        stale = self._stale_sources(parsed, groups, output_dir)
        cleaned: List[str] = []
        if not req.dry_run and same_dir and stale:
            if req.backup:
                cleaned = self._backup_sources(stale, output_dir)
            else:
                cleaned = self._remove_sources(stale)

        self._report(req, output_dir, same_dir, cleaned)

        return OrganizeResult(
            processed_files=len(parsed.files),
            total_blocks=total,
            file_groups=len(groups),
            output_dir=output_dir,
            was_dry_run=req.dry_run,
            files_written=list(writer.written),
            files_unchanged=list(writer.unchanged),
            cleaned_files=cleaned,
        )

    # config
    def _load_config(self, config_file: str) -> Config:
        path = config_file or find_default_config()
        if not path:
            return Config()
        logger.info("Loading configuration from: %s", path)
        return self.config_loader(path)

    # enumeration
    def _parse_input(self, input_path: str, is_dir: bool, recursive: bool) -> ParsedFiles:
        if not is_dir:
            logger.info("Parsing Terraform file: %s", input_path)
            parsed_file = self.parser(input_path)
            logger.info("Found %d blocks", len(parsed_file.blocks))
            return ParsedFiles(files=[parsed_file])

        if recursive:
            logger.info("Scanning directory recursively for Terraform files: %s", input_path)
            paths = self._walk_recursive(input_path)
        else:
            logger.info("Scanning directory for Terraform files: %s", input_path)
            paths = self._list_directory(input_path)

        parsed = ParsedFiles()
        for path in paths:
            parsed_file = self._process_file(path)
            if parsed_file is not None:
                parsed.files.append(parsed_file)
        logger.info("Found %d .tf files with %d total blocks", len(parsed.files), parsed.total_blocks())
        return parsed

    def _list_directory(self, dir_path: str) -> List[str]:
        try:
            entries = sorted(os.scandir(dir_path), key=lambda e: e.name)
        except OSError as e:
            raise OrganizeError(f"failed to read directory: {e}") from e

        paths: List[str] = []
        for entry in entries:
            if not entry.name.endswith(".tf"):
                continue
            if entry.is_symlink():
                logger.warning("Warning: skipping symbolic link: %s", entry.path)
                continue
            if entry.is_file():
                paths.append(entry.path)
        return paths

    def _walk_recursive(self, dir_path: str) -> List[str]:
        backup_dir = os.path.join(dir_path, BACKUP_DIR)
        paths: List[str] = []

        def on_error(err: OSError):
            raise OrganizeError(f"failed to read directory: {err}") from err

        for root, dirs, files in os.walk(dir_path, onerror=on_error, followlinks=False):
            kept = []
            for d in sorted(dirs):
                full = os.path.join(root, d)
                if d.startswith(".") or full == backup_dir:
                    continue
                if os.path.islink(full):
                    logger.warning("Warning: skipping symbolic link: %s", full)
                    continue
                kept.append(d)
            dirs[:] = kept

            for name in sorted(files):
                if not name.endswith(".tf"):
                    continue
                full = os.path.join(root, name)
                if os.path.islink(full):
                    logger.warning("Warning: skipping symbolic link: %s", full)
                    continue
                paths.append(full)
        return paths

    def _process_file(self, path: str) -> Optional[ParsedFile]:
        try:
            validate_path(path)
        except ValidationError as e:
            logger.warning("Warning: skipping unsafe path %s: %s", path, e)
            return None
        try:
            parsed_file = self.parser(path)
        except ParseError as e:
            logger.warning("Warning: failed to parse %s: %s", path, e)
            return None
        logger.info("  Processed: %s (%d blocks)", path, len(parsed_file.blocks))
        return parsed_file

    # cleanup
    def _stale_sources(self, parsed: ParsedFiles, groups: List[BlockGroup], output_dir: str) -> List[str]:
        generated = [g.file_name for g in groups]
        return [p for p in parsed.file_names() if is_stale_source(p, output_dir, generated)]

    def _backup_sources(self, sources: List[str], output_dir: str) -> List[str]:
        backup_dir = os.path.join(output_dir, BACKUP_DIR)
        try:
            os.makedirs(backup_dir, mode=0o750, exist_ok=True)
        except OSError as e:
            raise OrganizeError(f"failed to create backup directory: {e}") from e

        moved: List[str] = []
        for source in sources:
            target = os.path.join(backup_dir, os.path.basename(source))
            try:
                os.replace(source, target)
            except OSError as e:
                raise OrganizeError(f"failed to backup file {source}: {e}") from e
            logger.info("  Backed up: %s -> %s", source, target)
            moved.append(source)
        return moved

    def _remove_sources(self, sources: List[str]) -> List[str]:
        removed: List[str] = []
        for source in sources:
            try:
                os.remove(source)
            except OSError as e:
                raise OrganizeError(f"failed to remove file {source}: {e}") from e
            logger.info("  Removed: %s", source)
            removed.append(source)
        return removed

    def _report(self, req: OrganizeRequest, output_dir: str, same_dir: bool, cleaned: List[str]):
        if req.dry_run:
            if same_dir:
                action = "backup" if req.backup else "remove"
                logger.info("Dry run completed. Use the run command to actually create files and %s source files.", action)
            else:
                logger.info("Dry run completed. Use the run command to actually create files.")
        elif cleaned:
            verb = "backed up" if req.backup else "removed"
            logger.info("Successfully organized Terraform files into: %s (%s %d source files)",
                        output_dir, verb, len(cleaned))
        else:
            logger.info("Successfully organized Terraform files into: %s", output_dir)
