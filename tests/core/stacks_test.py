# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Tests for stack discovery and definition loading."""

from pathlib import Path
import pytest
from infraplan.core.exceptions import MalformedDefinitionError
from infraplan.core.planning.graph import build_graph
from infraplan.core.services.stacks import (
    DEFINITIONS_FILE,
    StackLoader,
    load_definitions_file,
    parse_definitions,
)

VALID = """
resources:
  - type: null_resource
    name: vnet
    attributes:
      address_space: ["10.10.0.0/16"]
  - type: null_resource
    name: vm
    attributes:
      image: "${data.null_data_source.image.offer}"
    depends_on: [null_resource.vnet]
data:
  - type: null_data_source
    name: image
    attributes:
      offer: sles-sap-15-sp5
"""


def _write_stack(base: Path, key: str, content: str) -> Path:
    stack_dir = base / key
    stack_dir.mkdir(parents=True)
    path = stack_dir / DEFINITIONS_FILE
    path.write_text(content, encoding="utf-8")
    return path


class TestParseDefinitions:
    """
    Tests for parse_definitions.
    """

    def test_valid_document(self, temp_dir: Path) -> None:
        """
        Resources and data sources are parsed with their modes.
        """
        definitions = load_definitions_file(_write_stack(temp_dir, "dev", VALID))

        assert [d.identity for d in definitions] == [
            "null_resource.vnet",
            "null_resource.vm",
            "data.null_data_source.image",
        ]
        assert definitions[1].depends_on == ["null_resource.vnet"]
        assert definitions[1].references() == {
            "null_resource.vnet",
            "data.null_data_source.image",
        }

    def test_empty_document(self) -> None:
        """
        An empty file declares nothing.
        """
        assert parse_definitions(None, "empty.yaml") == []

    @pytest.mark.parametrize(
        "document,reason",
        [
            (["a"], "top level must be a mapping"),
            ({"outputs": {}}, "unknown top-level keys"),
            ({"resources": {"type": "x"}}, "'resources' must be a list"),
            ({"resources": ["x"]}, "resources[0] must be a mapping"),
            ({"data": [{"type": "x", "name": "y", "mode": "managed"}]}, "mode is implied"),
            ({"resources": [{"type": "x"}]}, "resources[0]"),
            ({"resources": [{"type": "data", "name": "y"}]}, "resources[0]"),
            ({"resources": [{"type": "x", "name": "bad name"}]}, "resources[0]"),
        ],
    )
    def test_invalid_documents(self, document, reason: str) -> None:
        """
        Schema violations raise MalformedDefinitionError naming the problem.
        """
        with pytest.raises(MalformedDefinitionError) as exc_info:
            parse_definitions(document, "stack.yaml")
        assert reason in exc_info.value.reason
        assert exc_info.value.source == "stack.yaml"

    def test_invalid_yaml(self, temp_dir: Path) -> None:
        """
        YAML syntax errors are reported as malformed definitions.
        """
        path = _write_stack(temp_dir, "dev", "resources: [unclosed")
        with pytest.raises(MalformedDefinitionError) as exc_info:
            load_definitions_file(path)
        assert "invalid YAML" in exc_info.value.reason

    def test_missing_file(self, temp_dir: Path) -> None:
        """
        An unreadable file is reported as a malformed definition.
        """
        with pytest.raises(MalformedDefinitionError):
            load_definitions_file(temp_dir / "nope.yaml")


class TestStackLoader:
    """
    Tests for StackLoader.
    """

    def test_list_stacks(self, temp_dir: Path) -> None:
        """
        Stacks are listed sorted with resource counts; broken ones with zero.
        """
        _write_stack(temp_dir, "prod", VALID)
        _write_stack(temp_dir, "broken", "resources: 42")
        (temp_dir / "no-definitions").mkdir()
        (temp_dir / ".hidden").mkdir()

        stacks = StackLoader(temp_dir).list_stacks()

        assert [s.key for s in stacks] == ["broken", "prod"]
        assert (stacks[0].resources, stacks[0].data_sources) == (0, 0)
        assert (stacks[1].resources, stacks[1].data_sources) == (2, 1)

    def test_missing_base_dir(self, temp_dir: Path) -> None:
        """
        A missing stacks directory lists nothing.
        """
        assert StackLoader(temp_dir / "missing").list_stacks() == []

    def test_load(self, temp_dir: Path) -> None:
        """
        Loading a stack returns its definitions.
        """
        _write_stack(temp_dir, "dev", VALID)
        loader = StackLoader(temp_dir)

        assert loader.exists("dev")
        assert len(loader.load("dev")) == 3

    def test_load_missing(self, temp_dir: Path) -> None:
        """
        Loading an unknown stack raises FileNotFoundError.
        """
        with pytest.raises(FileNotFoundError):
            StackLoader(temp_dir).load("nope")

    @pytest.mark.parametrize("key", ["", "..", ".hidden", "a/b"])
    def test_invalid_keys(self, temp_dir: Path, key: str) -> None:
        """
        Keys that are not plain directory names are rejected.
        """
        loader = StackLoader(temp_dir)
        with pytest.raises(ValueError):
            loader.path_for(key)
        assert loader.exists(key) is False

    def test_bundled_example_stack(self) -> None:
        """
        The bundled hana-demo stack parses and builds.
        """
        base = Path(__file__).resolve().parents[2] / "stacks"
        definitions = StackLoader(base).load("hana-demo")
        graph = build_graph(definitions)

        assert "ansible_playbook.hana_disk_layout" in graph
        assert "null_resource.hana_vm" in graph.dependencies("ansible_playbook.hana_disk_layout")
