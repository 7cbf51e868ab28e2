"""
End-to-end tests for OrganizeFilesUseCase.
"""

import logging
import os

import pytest

from tf_organize import OrganizeError, OrganizeFilesUseCase, OrganizeRequest, is_stale_source
from tf_splitter import DuplicateResourceError


EXPECTED = {
    "variables.tf": 'variable "instance_type" {\n  default = "t2.micro"\n}\n',
    "resource__aws_instance.tf": (
        'resource "aws_instance" "web" {\n'
        "  # keep me\n"
        '  ami           = "ami-123"\n'
        "  instance_type = var.instance_type\n"
        "}\n"
    ),
    "outputs.tf": 'output "web_id" {\n  value = aws_instance.web.id\n}\n',
}


def _run(path, **kwargs):
    return OrganizeFilesUseCase().execute(OrganizeRequest(input_path=str(path), **kwargs))


def _snapshot(directory):
    return {p.name: p.read_bytes() for p in sorted(directory.iterdir()) if p.is_file()}


class TestInPlace:

    def test_splits_and_removes_source(self, infra_dir, write_files, main_tf):
        write_files(infra_dir, {"main.tf": main_tf})
        result = _run(infra_dir)

        assert sorted(os.listdir(infra_dir)) == sorted(EXPECTED)
        for name, content in EXPECTED.items():
            assert (infra_dir / name).read_text() == content
        assert result.processed_files == 1
        assert result.total_blocks == 3
        assert result.file_groups == 3
        assert result.cleaned_files == [str(infra_dir / "main.tf")]
        assert not result.was_dry_run

    def test_second_run_is_a_no_op(self, infra_dir, write_files, main_tf):
        write_files(infra_dir, {"main.tf": main_tf})
        _run(infra_dir)
        before = _snapshot(infra_dir)

        result = _run(infra_dir)
        assert result.files_written == []
        assert len(result.files_unchanged) == 3
        assert result.cleaned_files == []
        assert _snapshot(infra_dir) == before

    def test_backup_moves_sources(self, infra_dir, write_files, main_tf):
        write_files(infra_dir, {"main.tf": main_tf})
        result = _run(infra_dir, backup=True)
        assert (infra_dir / "backup" / "main.tf").read_text() == main_tf
        assert not (infra_dir / "main.tf").exists()
        assert result.cleaned_files == [str(infra_dir / "main.tf")]

    def test_backup_overwrites_previous_copy(self, infra_dir, write_files, main_tf):
        write_files(infra_dir, {"main.tf": main_tf, "backup/main.tf": "# stale copy\n"})
        _run(infra_dir, backup=True)
        assert (infra_dir / "backup" / "main.tf").read_text() == main_tf
        assert os.listdir(infra_dir / "backup") == ["main.tf"]

    def test_generated_and_standard_files_are_kept(self, infra_dir, write_files):
        write_files(infra_dir, {
            "variables.tf": 'variable "b" {}\n',
            "resource__aws_vpc.tf": 'resource "aws_vpc" "main" {}\n',
            "extra.tf": 'variable "a" {}\n',
        })
        _run(infra_dir)
        assert sorted(os.listdir(infra_dir)) == ["resource__aws_vpc.tf", "variables.tf"]
        assert (infra_dir / "variables.tf").read_text() == 'variable "a" {\n}\n\nvariable "b" {\n}\n'

    def test_single_file_input(self, infra_dir, write_files, main_tf):
        write_files(infra_dir, {"main.tf": main_tf, "other.tf": 'locals {}\n'})
        result = _run(infra_dir / "main.tf")
        assert result.processed_files == 1
        assert (infra_dir / "other.tf").exists()
        assert not (infra_dir / "main.tf").exists()
        assert not (infra_dir / "locals.tf").exists()


class TestOutputDirectory:

    def test_sources_untouched(self, tmp_path, infra_dir, write_files, main_tf):
        write_files(infra_dir, {"main.tf": main_tf})
        out = tmp_path / "out"
        result = _run(infra_dir, output_dir=str(out))

        assert os.listdir(infra_dir) == ["main.tf"]
        assert sorted(os.listdir(out)) == sorted(EXPECTED)
        assert result.cleaned_files == []
        assert result.output_dir == str(out)

    def test_input_layout_does_not_change_output(self, tmp_path, write_files):
        a = 'variable "x" {}\n\nresource "aws_vpc" "v" {\n  cidr_block = "10.0.0.0/16"\n}\n'
        b = 'output "o" {\n  value = 1\n}\n\nvariable "y" {}\n'
        write_files(tmp_path / "one", {"a.tf": a, "b.tf": b})
        write_files(tmp_path / "two", {"a.tf": b, "b.tf": a})

        _run(tmp_path / "one", output_dir=str(tmp_path / "out1"))
        _run(tmp_path / "two", output_dir=str(tmp_path / "out2"))
        assert _snapshot(tmp_path / "out1") == _snapshot(tmp_path / "out2")


class TestDryRun:

    def test_nothing_changes(self, infra_dir, write_files, main_tf, caplog):
        caplog.set_level(logging.INFO)
        write_files(infra_dir, {"main.tf": main_tf})
        result = _run(infra_dir, dry_run=True)

        assert os.listdir(infra_dir) == ["main.tf"]
        assert result.was_dry_run
        assert result.file_groups == 3
        assert result.files_written == []
        assert "Would create file:" in caplog.text
        assert "Dry run completed. Use the run command to actually create files and remove source files." in caplog.text


class TestEnumeration:

    def test_unparseable_file_is_skipped(self, infra_dir, write_files, caplog):
        caplog.set_level(logging.WARNING)
        write_files(infra_dir, {"bad.tf": 'resource "a" {\n', "good.tf": 'variable "a" {}\n'})
        result = _run(infra_dir)

        assert result.processed_files == 1
        assert "Warning: failed to parse" in caplog.text
        assert (infra_dir / "bad.tf").exists()
        assert not (infra_dir / "good.tf").exists()
        assert (infra_dir / "variables.tf").exists()

    def test_symlink_is_skipped(self, tmp_path, infra_dir, write_files, caplog):
        caplog.set_level(logging.WARNING)
        target = tmp_path / "elsewhere.tf"
        target.write_text('variable "outside" {}\n')
        write_files(infra_dir, {"main.tf": 'variable "a" {}\n'})
        os.symlink(target, infra_dir / "link.tf")

        result = _run(infra_dir)
        assert result.processed_files == 1
        assert "Warning: skipping symbolic link:" in caplog.text
        assert "outside" not in (infra_dir / "variables.tf").read_text()

    def test_non_tf_files_ignored(self, infra_dir, write_files):
        write_files(infra_dir, {"notes.txt": "x = {", "main.tf": 'variable "a" {}\n'})
        result = _run(infra_dir)
        assert result.processed_files == 1
        assert (infra_dir / "notes.txt").exists()

    def test_no_blocks(self, infra_dir, write_files, caplog):
        caplog.set_level(logging.INFO)
        write_files(infra_dir, {"empty.tf": "# nothing\n"})
        result = _run(infra_dir)
        assert result.total_blocks == 0
        assert result.file_groups == 0
        assert "No Terraform blocks found to organize" in caplog.text
        assert (infra_dir / "empty.tf").exists()

    def test_recursive(self, infra_dir, write_files):
        write_files(infra_dir, {
            "main.tf": 'variable "a" {}\n',
            "modules/net/net.tf": 'resource "aws_vpc" "v" {}\n',
            ".terraform/modules/x.tf": 'resource "aws_vpc" "hidden" {}\n',
            "backup/old.tf": 'resource "aws_vpc" "old" {}\n',
        })
        result = _run(infra_dir, recursive=True)

        assert result.processed_files == 2
        content = (infra_dir / "resource__aws_vpc.tf").read_text()
        assert '"v"' in content
        assert "hidden" not in content
        assert "old" not in content
        # nested sources are merged into the top-level output, then cleaned up
        assert not (infra_dir / "modules" / "net" / "net.tf").exists()
        assert not (infra_dir / "main.tf").exists()
        assert (infra_dir / "backup" / "old.tf").exists()

    def test_recursive_rerun_is_a_no_op(self, infra_dir, write_files):
        """Nested files named like generated output are merged once, then removed."""
        write_files(infra_dir, {
            "main.tf": 'variable "a" {}\n',
            "sub/variables.tf": 'variable "b" {}\n',
            "sub/resource__aws_vpc.tf": 'resource "aws_vpc" "v" {}\n',
        })
        _run(infra_dir, recursive=True)
        first = _snapshot(infra_dir)
        assert first["variables.tf"] == b'variable "a" {\n}\n\nvariable "b" {\n}\n'
        assert os.listdir(infra_dir / "sub") == []

        result = _run(infra_dir, recursive=True)
        assert result.files_written == []
        assert result.cleaned_files == []
        assert _snapshot(infra_dir) == first

    def test_missing_input(self, tmp_path):
        with pytest.raises(OrganizeError, match="failed to access input path"):
            _run(tmp_path / "missing")


class TestConfiguration:

    def test_explicit_config(self, tmp_path, infra_dir, write_files):
        config = tmp_path / "org.yaml"
        config.write_text("groups:\n  - name: net\n    filename: network.tf\n    patterns: ['aws_vpc']\n")
        write_files(infra_dir, {"main.tf": 'resource "aws_vpc" "v" {}\n'})
        _run(infra_dir, config_file=str(config))
        assert os.listdir(infra_dir) == ["network.tf"]

    def test_config_added_after_first_split(self, tmp_path, infra_dir, write_files):
        """A generated file whose blocks move to a configured group is cleaned up."""
        write_files(infra_dir, {"main.tf": 'resource "aws_vpc" "v" {}\n'})
        _run(infra_dir)
        assert os.listdir(infra_dir) == ["resource__aws_vpc.tf"]

        config = tmp_path / "org.yaml"
        config.write_text("groups:\n  - name: net\n    filename: network.tf\n    patterns: ['aws_vpc']\n")
        result = _run(infra_dir, config_file=str(config))
        assert os.listdir(infra_dir) == ["network.tf"]
        assert result.cleaned_files == [str(infra_dir / "resource__aws_vpc.tf")]

        result = _run(infra_dir, config_file=str(config))
        assert result.files_written == []
        assert result.cleaned_files == []
        assert (infra_dir / "network.tf").read_text() == 'resource "aws_vpc" "v" {\n}\n'

    def test_default_config_from_cwd(self, isolated_cwd, infra_dir, write_files, caplog):
        caplog.set_level(logging.INFO)
        (isolated_cwd / "terraform-file-organize.yaml").write_text(
            "groups:\n  - name: net\n    filename: network.tf\n    patterns: ['resource.aws_*']\n"
        )
        write_files(infra_dir, {"main.tf": 'resource "aws_vpc" "v" {}\n'})
        _run(infra_dir)
        assert os.listdir(infra_dir) == ["network.tf"]
        assert "Loading configuration from:" in caplog.text

    def test_duplicate_resources_abort_before_writing(self, infra_dir, write_files):
        write_files(infra_dir, {
            "a.tf": 'resource "aws_vpc" "v" {}\n',
            "b.tf": 'resource "aws_vpc" "v" {}\n',
        })
        with pytest.raises(DuplicateResourceError):
            _run(infra_dir)
        assert sorted(os.listdir(infra_dir)) == ["a.tf", "b.tf"]


class TestStaleSource:

    @pytest.mark.parametrize("rel,generated,expected", [
        ("main.tf", [], True),
        ("network.tf", ["network.tf"], False),
        ("variables.tf", ["variables.tf"], False),
        ("variables.tf", [], True),
        ("resource__aws_vpc.tf", [], True),
        ("sub/variables.tf", ["variables.tf"], True),
        ("sub/resource__aws_vpc.tf", ["resource__aws_vpc.tf"], True),
    ])
    def test_cases(self, tmp_path, rel, generated, expected):
        """Only files this run writes, directly in the output directory, survive."""
        assert is_stale_source(str(tmp_path / rel), str(tmp_path), generated) is expected
