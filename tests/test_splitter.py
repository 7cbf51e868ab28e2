"""
Tests for tf_splitter: default routing, config matching, duplicates and ordering.
"""

import pytest

from tf_config import Config, GroupConfig
from tf_parser import parse_hcl
from tf_splitter import (
    DuplicateResourceError,
    Splitter,
    default_file_name,
    match_candidates,
    sanitize_file_name,
    sort_groups,
)
from tf_struct import Block, ParsedFiles


def _block(block_type, *labels, raw="", source="main.tf"):
    return Block(type=block_type, labels=list(labels), raw_body=raw, source_file=source)


def _parsed(*texts):
    return ParsedFiles(files=[parse_hcl(t, f"f{i}.tf") for i, t in enumerate(texts)])


class TestSanitizeFileName:

    @pytest.mark.parametrize("name,expected", [
        ("aws_instance", "aws_instance"),
        ("../../etc/passwd", "passwd"),
        ("my bucket:v2", "my_bucket_v2"),
        ("a**b", "a_b"),
        ("__x__", "x"),
        ("CON", "tf_CON"),
        ("com1", "tf_com1"),
        ("", "unnamed"),
        ("___", "unnamed"),
        ("naïve", "na_ve"),
        ("..", "unnamed"),
        ("a/..", "unnamed"),
        ("v1..2", "v1.2"),
        (".hidden.", "hidden"),
    ])
    def test_cases(self, name, expected):
        assert sanitize_file_name(name) == expected

    def test_length_cap(self):
        assert sanitize_file_name("a" * 300) == "a" * 200


class TestDefaultRoutes:

    @pytest.mark.parametrize("block,expected", [
        (_block("resource", "aws_instance", "web"), "resource__aws_instance.tf"),
        (_block("data", "aws_ami", "ubuntu"), "data__aws_ami.tf"),
        (_block("module", "vpc"), "module__vpc.tf"),
        (_block("provider", "aws"), "providers.tf"),
        (_block("variable", "region"), "variables.tf"),
        (_block("output", "id"), "outputs.tf"),
        (_block("locals"), "locals.tf"),
        (_block("terraform"), "terraform.tf"),
        (_block("moved"), "moved.tf"),
        (_block("resource", "bad name", "x"), "resource__bad_name.tf"),
        (_block("module", ".."), "module__unnamed.tf"),
    ])
    def test_routes(self, block, expected):
        assert default_file_name(block) == expected


class TestMatchCandidates:

    def test_resource(self):
        assert match_candidates(_block("resource", "aws_instance", "web")) == [
            "resource.aws_instance.web", "resource.aws_instance", "aws_instance", "resource",
        ]

    def test_single_label(self):
        assert match_candidates(_block("variable", "region")) == ["variable.region", "region", "variable"]

    def test_no_labels(self):
        assert match_candidates(_block("locals")) == ["locals"]


class TestConfiguredRouting:

    def test_most_specific_candidate_wins_regardless_of_group_order(self):
        """`resource.aws_instance` beats `aws_instance` even when declared later."""
        broad = GroupConfig("broad", "compute.tf", ("aws_instance",))
        narrow = GroupConfig("narrow", "instances.tf", ("resource.aws_instance",))
        block = _block("resource", "aws_instance", "web")
        for groups in ((broad, narrow), (narrow, broad)):
            assert Splitter(Config(groups=groups)).file_name_for(block) == "instances.tf"

    def test_wildcard_group(self):
        config = Config(groups=(GroupConfig("storage", "storage.tf", ("aws_s3_*",)),))
        splitter = Splitter(config)
        assert splitter.file_name_for(_block("resource", "aws_s3_bucket", "b")) == "storage.tf"
        assert splitter.file_name_for(_block("data", "aws_s3_object", "o")) == "storage.tf"
        assert splitter.file_name_for(_block("resource", "aws_vpc", "v")) == "resource__aws_vpc.tf"

    def test_block_type_pattern(self):
        config = Config(groups=(GroupConfig("vars", "inputs.tf", ("variable",)),))
        assert Splitter(config).file_name_for(_block("variable", "region")) == "inputs.tf"

    def test_excluded_target_falls_back_to_default_route(self):
        config = Config(
            groups=(GroupConfig("storage", "storage.tf", ("aws_s3_*", "output")),),
            exclude_files=("storage*",),
        )
        splitter = Splitter(config)
        assert splitter.file_name_for(_block("resource", "aws_s3_bucket", "b")) == "resource__aws_s3_bucket.tf"
        assert splitter.file_name_for(_block("output", "id")) == "outputs.tf"

    def test_configured_file_shared_with_default_route(self):
        """A group pointed at variables.tf merges with the variables."""
        config = Config(groups=(GroupConfig("net", "variables.tf", ("aws_vpc",)),))
        parsed = _parsed('variable "a" {}\nresource "aws_vpc" "main" {}\n')
        groups = Splitter(config).group_blocks(parsed)
        assert [g.file_name for g in groups] == ["variables.tf"]
        assert [b.type for b in groups[0].blocks] == ["resource", "variable"]


class TestDuplicates:

    def test_duplicate_resource(self):
        parsed = _parsed(
            'resource "aws_instance" "web" {}\n',
            'resource "aws_instance" "web" {\n  ami = "x"\n}\n',
        )
        with pytest.raises(DuplicateResourceError) as exc:
            Splitter().group_blocks(parsed)
        assert str(exc.value) == "duplicate resource name 'aws_instance.web' found"
        assert exc.value.address == "aws_instance.web"

    def test_duplicate_data_source(self):
        parsed = _parsed('data "aws_ami" "ubuntu" {}\ndata "aws_ami" "ubuntu" {}\n')
        with pytest.raises(DuplicateResourceError, match=r"'data\.aws_ami\.ubuntu'"):
            Splitter().group_blocks(parsed)

    def test_same_name_different_kind_is_allowed(self):
        parsed = _parsed('resource "aws_ami" "ubuntu" {}\ndata "aws_ami" "ubuntu" {}\n')
        assert len(Splitter().group_blocks(parsed)) == 2

    def test_repeated_variables_are_not_checked(self):
        parsed = _parsed('variable "a" {}\n', 'variable "a" {}\n')
        groups = Splitter().group_blocks(parsed)
        assert len(groups[0].blocks) == 2


class TestOrdering:

    def test_groups_and_blocks_sorted(self):
        parsed = _parsed(
            'variable "zone" {}\n'
            'resource "aws_vpc" "b" {}\n'
            'variable "region" {}\n'
            'resource "aws_vpc" "a" {}\n'
            'output "id" {}\n'
        )
        groups = Splitter().group_blocks(parsed)
        assert [g.file_name for g in groups] == ["outputs.tf", "resource__aws_vpc.tf", "variables.tf"]
        assert [b.labels[1] for b in groups[1].blocks] == ["a", "b"]
        assert [b.labels[0] for b in groups[2].blocks] == ["region", "zone"]

    def test_group_metadata(self):
        groups = Splitter().group_blocks(_parsed('resource "aws_vpc" "a" {}\n'))
        assert groups[0].block_type == "resource"
        assert groups[0].sub_type == "aws_vpc"

    def test_input_order_does_not_matter(self):
        first = 'variable "a" {\n  default = 1\n}\n'
        second = 'variable "b" {}\nresource "aws_vpc" "v" {}\n'

        def layout(parsed):
            return [(g.file_name, [(b.labels, b.raw_body) for b in g.blocks])
                    for g in Splitter().group_blocks(parsed)]

        assert layout(_parsed(first, second)) == layout(_parsed(second, first))

    def test_identical_keys_tie_break_on_content(self):
        blocks = [_block("variable", "a", raw="2"), _block("variable", "a", raw="1")]
        groups = sort_groups(Splitter().build_groups(blocks))
        assert [b.raw_body for b in groups[0].blocks] == ["1", "2"]
