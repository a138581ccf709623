"""Two-stage container image assembly for jab3."""

from jab3ops.image.builder import DockerNotFoundError, ImageBuildError, build_image, inspect_image
from jab3ops.image.recipe import BuildRecipe, render_dockerfile, write_dockerfile

__all__ = [
    "BuildRecipe",
    "DockerNotFoundError",
    "ImageBuildError",
    "build_image",
    "inspect_image",
    "render_dockerfile",
    "write_dockerfile",
]
