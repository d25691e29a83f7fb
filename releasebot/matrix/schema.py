"""Pydantic models for matrix declaration validation.

A matrix file names the product being released and the set of platforms
it is built for. Each platform points at the build recipe and container
image definition used to build it, relative to the source root.
"""

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Ids end up in artifact names, image tags and directory names, so they must
# start and end with an alphanumeric ('.', '..' and '-x' are rejected)
PLATFORM_ID_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9_.\-]*[A-Za-z0-9])?$")


def _validate_relative_path(v: str) -> str:
    if v.startswith("/"):
        raise ValueError(f"path must be relative to the source root, got '{v}'")
    if ".." in v.split("/"):
        raise ValueError(f"path must not escape the source root, got '{v}'")
    return v


class PlatformSchema(BaseModel):
    """Schema for one platform in the matrix.

    Attributes:
        id: Unique platform identifier; defaults to '<architecture>-<os_flavor>'.
        os_flavor: Base distribution of the build container (e.g., 'centos7').
        architecture: CPU architecture (e.g., 'aarch64', 'x86_64').
        build_recipe: Script run inside the container, relative to source root.
        image_definition: Container image definition, relative to source root.
        interpreter: Command the recipe is passed to (e.g., 'bash'); when
            omitted the recipe is executed directly and its shebang applies.
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = Field(default=None, description="Unique platform identifier")
    os_flavor: Annotated[
        str, Field(description="OS flavor", min_length=1, max_length=100)
    ]
    architecture: Annotated[
        str, Field(description="CPU architecture", min_length=1, max_length=50)
    ]
    build_recipe: Annotated[
        str, Field(description="Build recipe path", min_length=1, max_length=500)
    ]
    image_definition: Annotated[
        str,
        Field(description="Image definition path", min_length=1, max_length=500),
    ]
    interpreter: str | None = Field(
        default=None,
        min_length=1,
        max_length=200,
        description="Interpreter command for the build recipe",
    )

    @model_validator(mode="after")
    def default_id(self) -> "PlatformSchema":
        """Derive the id from architecture and OS flavor when omitted."""
        if self.id is None:
            self.id = f"{self.architecture}-{self.os_flavor}"
        if not PLATFORM_ID_PATTERN.match(self.id):
            raise ValueError(
                f"id must match pattern {PLATFORM_ID_PATTERN.pattern}, "
                f"got '{self.id}'"
            )
        return self

    @field_validator("build_recipe", "image_definition")
    @classmethod
    def validate_paths(cls, v: str) -> str:
        """Validate paths stay inside the source tree."""
        return _validate_relative_path(v)


class MatrixSchema(BaseModel):
    """Schema for a complete matrix declaration.

    Attributes:
        product: Product name, first segment of every artifact name.
        os_family: OS family segment of artifact names.
        output_dir: Directory inside the source tree the recipe writes to.
        artifact_path: Path of the binary relative to output_dir.
        platforms: Platforms to build.
    """

    model_config = ConfigDict(extra="forbid")

    product: Annotated[
        str, Field(description="Product name", min_length=1, max_length=100)
    ]
    os_family: Annotated[
        str, Field(description="OS family", min_length=1, max_length=50)
    ] = "linux"
    output_dir: str = Field(
        default="target-docker",
        description="Build output directory relative to the source root",
    )
    artifact_path: Annotated[
        str,
        Field(description="Binary path relative to output_dir", min_length=1),
    ]
    platforms: list[PlatformSchema] = Field(
        min_length=1, description="Platforms to build"
    )

    @field_validator("product", "os_family")
    @classmethod
    def validate_name_segment(cls, v: str) -> str:
        """Validate artifact name segments."""
        if not PLATFORM_ID_PATTERN.match(v):
            raise ValueError(
                f"must match pattern {PLATFORM_ID_PATTERN.pattern}, got '{v}'"
            )
        return v

    @field_validator("output_dir", "artifact_path")
    @classmethod
    def validate_paths(cls, v: str) -> str:
        """Validate paths stay inside the output tree."""
        return _validate_relative_path(v)


__all__ = [
    "PLATFORM_ID_PATTERN",
    "MatrixSchema",
    "PlatformSchema",
]
