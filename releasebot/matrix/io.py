"""Matrix file loading.

Matrix declarations are YAML or JSON files validated against
MatrixSchema. The file format is chosen by extension.
"""

import json
from pathlib import Path
from typing import Any

import yaml

from releasebot.matrix.schema import MatrixSchema


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the top level is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed JSON content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the top level is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_matrix_data(data: dict[str, Any]) -> MatrixSchema:
    """Validate matrix data using the schema.

    Raises:
        pydantic.ValidationError: If data does not match schema.
    """
    return MatrixSchema.model_validate(data)


def load_matrix(path: Path) -> MatrixSchema:
    """Load and validate a matrix from a file (YAML or JSON).

    Args:
        path: Path to the matrix file.

    Returns:
        Validated MatrixSchema instance.

    Raises:
        ValueError: If file extension is not supported.
        FileNotFoundError: If the file does not exist.
        pydantic.ValidationError: If data does not match schema.
    """
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = load_yaml(path)
    elif suffix == ".json":
        data = load_json(path)
    else:
        raise ValueError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
        )
    return parse_matrix_data(data)


def matrix_to_yaml_string(matrix: MatrixSchema) -> str:
    """Convert a matrix to a YAML string."""
    data = matrix.model_dump(exclude_none=True)
    result: str = yaml.dump(
        data, default_flow_style=False, allow_unicode=True, sort_keys=False
    )
    return result


__all__ = [
    "load_json",
    "load_matrix",
    "load_yaml",
    "matrix_to_yaml_string",
    "parse_matrix_data",
]
