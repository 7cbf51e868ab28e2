"""
Shared fixtures for the organizer test suite.

Provides:
- an isolated working directory so default config files never leak between tests
- a helper for laying out .tf files on disk
"""

from pathlib import Path
from typing import Callable, Dict

import pytest


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path: Path, monkeypatch) -> Path:
    """Run every test from an empty working directory."""
    cwd = tmp_path / "cwd"
    cwd.mkdir()
    monkeypatch.chdir(cwd)
    return cwd


@pytest.fixture
def write_files() -> Callable[[Path, Dict[str, str]], Path]:
    """Write {relative_name: content} into a directory, creating it if needed."""

    def _write(directory: Path, files: Dict[str, str]) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        for name, content in files.items():
            target = directory / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return directory

    return _write


@pytest.fixture
def infra_dir(tmp_path: Path) -> Path:
    """Empty input directory for organize runs."""
    d = tmp_path / "infra"
    d.mkdir()
    return d


MAIN_TF = '''variable "instance_type" {
  default = "t2.micro"
}

resource "aws_instance" "web" {
  # keep me
  ami           = "ami-123"
  instance_type = var.instance_type
}

output "web_id" {
  value = aws_instance.web.id
}
'''


@pytest.fixture
def main_tf() -> str:
    return MAIN_TF
