"""Tests for matrix loading and the platform registry."""

import json
from pathlib import Path

import pytest
import yaml

from releasebot.matrix.io import load_matrix, matrix_to_yaml_string
from releasebot.matrix.registry import (
    ConfigurationError,
    PlatformDescriptor,
    build_registry,
    load_registry,
)
from releasebot.matrix.schema import MatrixSchema

from conftest import matrix_data, write_platform


def _write_yaml(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data, sort_keys=False))
    return path


class TestLoadMatrix:
    """Tests for matrix file loading."""

    def test_load_yaml(self, tmp_path: Path) -> None:
        """YAML declarations should load and validate."""
        path = _write_yaml(tmp_path / "m.yaml", matrix_data([("centos7", "x86_64")]))
        matrix = load_matrix(path)
        assert matrix.platforms[0].id == "x86_64-centos7"

    def test_load_json(self, tmp_path: Path) -> None:
        """JSON declarations should load and validate."""
        path = tmp_path / "m.json"
        path.write_text(json.dumps(matrix_data([("centos7", "x86_64")])))
        matrix = load_matrix(path)
        assert matrix.product == "worker"

    def test_unsupported_extension(self, tmp_path: Path) -> None:
        """Only YAML and JSON are accepted."""
        path = tmp_path / "m.toml"
        path.write_text("product = 'worker'\n")
        with pytest.raises(ValueError, match="Unsupported"):
            load_matrix(path)

    def test_non_mapping_rejected(self, tmp_path: Path) -> None:
        """A YAML list at top level is not a matrix."""
        path = tmp_path / "m.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_matrix(path)

    def test_yaml_string_reloads(self, tmp_path: Path) -> None:
        """The normalized YAML should include derived ids."""
        matrix = MatrixSchema.model_validate(matrix_data([("centos7", "x86_64")]))
        text = matrix_to_yaml_string(matrix)
        assert "id: x86_64-centos7" in text
        assert MatrixSchema.model_validate(yaml.safe_load(text)) == matrix


class TestBuildRegistry:
    """Tests for build_registry."""

    def test_descriptors_in_matrix_order(self, registry, source_tree: Path) -> None:
        """Descriptors should keep declaration order with absolute paths."""
        assert registry.ids == ["x86_64-distroA", "arm64-distroA"]
        first = registry.get("x86_64-distroA")
        assert isinstance(first, PlatformDescriptor)
        assert first.os_flavor == "distroA"
        assert first.architecture == "x86_64"
        assert first.build_recipe_path == (
            source_tree / "dev" / "distroA" / "x86_64" / "build.sh"
        ).resolve()
        assert first.image_definition_path.is_absolute()
        assert registry.product == "worker"
        assert registry.os_family == "linux"
        assert len(registry) == 2

    def test_duplicate_id_rejected(self, source_tree: Path) -> None:
        """Two platforms with the same id should abort before any build."""
        matrix = MatrixSchema.model_validate(
            matrix_data([("distroA", "x86_64"), ("distroA", "x86_64")])
        )
        with pytest.raises(ConfigurationError) as exc_info:
            build_registry(matrix, source_tree)
        assert exc_info.value.code == "duplicate_platform"

    def test_duplicate_explicit_id_rejected(self, source_tree: Path) -> None:
        """Explicit ids collide the same way as derived ones."""
        data = matrix_data([("distroA", "x86_64"), ("distroA", "arm64")])
        for platform in data["platforms"]:
            platform["id"] = "same"
        matrix = MatrixSchema.model_validate(data)
        with pytest.raises(ConfigurationError) as exc_info:
            build_registry(matrix, source_tree)
        assert exc_info.value.code == "duplicate_platform"

    def test_ids_differing_only_by_case_rejected(self, source_tree: Path) -> None:
        """Image tags lowercase the id, so case variants would share a tag."""
        data = matrix_data([("distroA", "x86_64"), ("distroA", "arm64")])
        data["platforms"][0]["id"] = "X86-a"
        data["platforms"][1]["id"] = "x86-A"
        matrix = MatrixSchema.model_validate(data)
        with pytest.raises(ConfigurationError, match="X86-a") as exc_info:
            build_registry(matrix, source_tree)
        assert exc_info.value.code == "duplicate_platform"

    def test_non_executable_recipe_rejected(self, source_tree: Path) -> None:
        """A recipe run directly must carry the execute bit."""
        (source_tree / "dev" / "distroA" / "x86_64" / "build.sh").chmod(0o644)
        matrix = MatrixSchema.model_validate(matrix_data([("distroA", "x86_64")]))
        with pytest.raises(ConfigurationError, match="interpreter") as exc_info:
            build_registry(matrix, source_tree)
        assert exc_info.value.code == "recipe_not_executable"

    def test_non_executable_recipe_with_interpreter(self, source_tree: Path) -> None:
        """An interpreter reads the recipe, so no execute bit is needed."""
        (source_tree / "dev" / "distroA" / "x86_64" / "build.sh").chmod(0o644)
        data = matrix_data([("distroA", "x86_64")])
        data["platforms"][0]["interpreter"] = "bash"
        registry = build_registry(MatrixSchema.model_validate(data), source_tree)
        assert registry.get("x86_64-distroA").interpreter == "bash"

    def test_missing_recipe_rejected(self, source_tree: Path) -> None:
        """A recipe that does not exist should abort the run."""
        (source_tree / "dev" / "distroA" / "arm64" / "build.sh").unlink()
        matrix = MatrixSchema.model_validate(
            matrix_data([("distroA", "x86_64"), ("distroA", "arm64")])
        )
        with pytest.raises(ConfigurationError, match="build recipe") as exc_info:
            build_registry(matrix, source_tree)
        assert exc_info.value.code == "missing_file"

    def test_missing_image_definition_rejected(self, source_tree: Path) -> None:
        """An image definition that does not exist should abort the run."""
        (source_tree / "dev" / "distroA" / "x86_64" / "Dockerfile").unlink()
        matrix = MatrixSchema.model_validate(matrix_data([("distroA", "x86_64")]))
        with pytest.raises(ConfigurationError, match="image definition") as exc_info:
            build_registry(matrix, source_tree)
        assert exc_info.value.code == "missing_file"

    def test_missing_source_root(self, tmp_path: Path) -> None:
        """The source root must be a directory."""
        matrix = MatrixSchema.model_validate(matrix_data([("distroA", "x86_64")]))
        with pytest.raises(ConfigurationError) as exc_info:
            build_registry(matrix, tmp_path / "nope")
        assert exc_info.value.code == "missing_source_root"

    def test_descriptors_are_immutable(self, registry) -> None:
        """Descriptors are frozen once the registry is built."""
        descriptor = registry.get("arm64-distroA")
        with pytest.raises(AttributeError):
            descriptor.id = "other"  # type: ignore[misc]


class TestRegistrySelection:
    """Tests for get/select."""

    def test_get_unknown(self, registry) -> None:
        """Unknown ids should raise with the known ids listed."""
        with pytest.raises(ConfigurationError, match="x86_64-distroA") as exc_info:
            registry.get("riscv64-distroA")
        assert exc_info.value.code == "unknown_platform"

    def test_select_none_keeps_all(self, registry) -> None:
        """Selecting nothing should keep every platform."""
        assert registry.select(None) is registry
        assert registry.select([]) is registry

    def test_select_keeps_matrix_order(self, source_tree: Path) -> None:
        """Selection should follow declaration order, not argument order."""
        write_platform(source_tree, "distroB", "x86_64")
        matrix = MatrixSchema.model_validate(
            matrix_data(
                [("distroA", "x86_64"), ("distroA", "arm64"), ("distroB", "x86_64")]
            )
        )
        registry = build_registry(matrix, source_tree)
        selected = registry.select(["x86_64-distroB", "x86_64-distroA"])
        assert selected.ids == ["x86_64-distroA", "x86_64-distroB"]
        assert selected.product == registry.product

    def test_select_unknown_rejected(self, registry) -> None:
        """Selecting an unknown id should fail."""
        with pytest.raises(ConfigurationError):
            registry.select(["x86_64-distroA", "mips-distroA"])


class TestLoadRegistry:
    """Tests for load_registry."""

    def test_relative_matrix_file(self, source_tree: Path) -> None:
        """A relative matrix path is resolved against the source root."""
        _write_yaml(
            source_tree / "releasebot.yaml",
            matrix_data([("distroA", "x86_64"), ("distroA", "arm64")]),
        )
        registry = load_registry(Path("releasebot.yaml"), source_tree)
        assert registry.ids == ["x86_64-distroA", "arm64-distroA"]

    def test_missing_matrix_file(self, source_tree: Path) -> None:
        """A missing matrix file is a configuration error."""
        with pytest.raises(ConfigurationError) as exc_info:
            load_registry(Path("absent.yaml"), source_tree)
        assert exc_info.value.code == "missing_file"

    def test_schema_error(self, source_tree: Path) -> None:
        """Schema violations are reported as configuration errors."""
        data = matrix_data([("distroA", "x86_64")])
        del data["product"]
        _write_yaml(source_tree / "releasebot.yaml", data)
        with pytest.raises(ConfigurationError) as exc_info:
            load_registry(Path("releasebot.yaml"), source_tree)
        assert exc_info.value.code == "validation"

    def test_parse_error(self, source_tree: Path) -> None:
        """Malformed YAML is reported as a configuration error."""
        (source_tree / "releasebot.yaml").write_text("product: [unclosed\n")
        with pytest.raises(ConfigurationError) as exc_info:
            load_registry(Path("releasebot.yaml"), source_tree)
        assert exc_info.value.code == "parse_error"
