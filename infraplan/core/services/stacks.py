# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Stack definitions on disk.

Each stack is a directory under the stacks base holding ``resources.yaml``::

    resources:
      - type: null_resource
        name: vnet
        attributes:
          address_space: ["10.10.0.0/16"]
    data:
      - type: null_data_source
        name: image
        attributes:
          offer: sles-sap-15-sp5
"""

from pathlib import Path
from typing import Any, List
import yaml
from pydantic import ValidationError
from infraplan.core.exceptions import MalformedDefinitionError
from infraplan.core.models.resource import ResourceDefinition, ResourceMode
from infraplan.core.models.stack import StackInfo
from infraplan.core.observability import get_logger

logger = get_logger(__name__)

DEFINITIONS_FILE = "resources.yaml"


def parse_definitions(document: Any, source: str) -> List[ResourceDefinition]:
    """Validate a parsed YAML document into resource definitions.

    :param document: Parsed YAML (mapping with ``resources`` and ``data`` lists)
    :type document: Any
    :param source: Name of the document, used in error messages
    :type source: str
    :returns: Definitions in document order, managed resources first
    :rtype: List[ResourceDefinition]
    :raises MalformedDefinitionError: If the document does not match the schema
    """
    if document is None:
        return []
    if not isinstance(document, dict):
        raise MalformedDefinitionError(source, "top level must be a mapping")
    unknown = set(document) - {"resources", "data"}
    if unknown:
        raise MalformedDefinitionError(source, f"unknown top-level keys: {sorted(unknown)}")

    definitions: List[ResourceDefinition] = []
    for section, mode in (("resources", ResourceMode.MANAGED), ("data", ResourceMode.DATA)):
        entries = document.get(section) or []
        if not isinstance(entries, list):
            raise MalformedDefinitionError(source, f"'{section}' must be a list")
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise MalformedDefinitionError(source, f"{section}[{index}] must be a mapping")
            if "mode" in entry:
                raise MalformedDefinitionError(
                    source, f"{section}[{index}]: mode is implied by the section"
                )
            try:
                definitions.append(ResourceDefinition.model_validate({**entry, "mode": mode}))
            except ValidationError as e:
                raise MalformedDefinitionError(source, f"{section}[{index}]: {e}") from e
    return definitions


def load_definitions_file(path: Path | str) -> List[ResourceDefinition]:
    """Load resource definitions from a YAML file.

    :param path: Path to the YAML file
    :type path: Path | str
    :returns: Parsed definitions
    :rtype: List[ResourceDefinition]
    :raises MalformedDefinitionError: If the file is unreadable or invalid
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except OSError as e:
        raise MalformedDefinitionError(str(path), f"cannot read file: {e}") from e
    except yaml.YAMLError as e:
        raise MalformedDefinitionError(str(path), f"invalid YAML: {e}") from e
    return parse_definitions(document, str(path))


class StackLoader:
    """Discovers stacks under a base directory and loads their definitions."""

    def __init__(self, base_dir: Path | str = "stacks") -> None:
        """Initialize the loader.

        :param base_dir: Directory containing one subdirectory per stack
        :type base_dir: Path | str
        """
        self.base_dir = Path(base_dir)

    def path_for(self, key: str) -> Path:
        """Definitions file for a stack.

        :raises ValueError: If the key is not a plain directory name
        """
        if not key or key.startswith(".") or Path(key).name != key:
            raise ValueError(f"Invalid stack key '{key}'")
        return self.base_dir / key / DEFINITIONS_FILE

    def exists(self, key: str) -> bool:
        """True if the stack has a definitions file."""
        try:
            return self.path_for(key).is_file()
        except ValueError:
            return False

    def list_stacks(self) -> List[StackInfo]:
        """Discover stacks, sorted by key.

        Stacks whose definitions fail to load are listed with zero counts.
        """
        stacks: List[StackInfo] = []
        if not self.base_dir.exists():
            logger.warning(f"Stacks directory not found: {self.base_dir}")
            return stacks

        for stack_dir in sorted(self.base_dir.iterdir()):
            if not stack_dir.is_dir() or stack_dir.name.startswith("."):
                continue
            definitions_file = stack_dir / DEFINITIONS_FILE
            if not definitions_file.exists():
                continue

            managed = data = 0
            try:
                definitions = load_definitions_file(definitions_file)
                data = sum(1 for d in definitions if d.is_data_source)
                managed = len(definitions) - data
            except MalformedDefinitionError as e:
                logger.warning(f"Failed to load definitions for stack {stack_dir.name}: {e}")

            stacks.append(
                StackInfo(
                    key=stack_dir.name,
                    path=str(definitions_file),
                    resources=managed,
                    data_sources=data,
                )
            )
        return stacks

    def load(self, key: str) -> List[ResourceDefinition]:
        """Load the definitions of one stack.

        :param key: Stack key (directory name)
        :type key: str
        :returns: Parsed definitions
        :rtype: List[ResourceDefinition]
        :raises FileNotFoundError: If the stack does not exist
        :raises MalformedDefinitionError: If the definitions are invalid
        """
        path = self.path_for(key)
        if not path.is_file():
            raise FileNotFoundError(f"Stack {key} not found")
        definitions = load_definitions_file(path)
        logger.info(f"Loaded {len(definitions)} definition(s) for stack {key}")
        return definitions
