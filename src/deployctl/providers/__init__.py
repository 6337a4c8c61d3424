"""Provider interfaces for deployctl."""
from __future__ import annotations

from .aws import AwsError, AwsProvider
from .build import BuildError, BuildProvider
from .process import CommandError
from .terraform import TerraformError, TerraformProvider

__all__ = [
    "AwsError",
    "AwsProvider",
    "BuildError",
    "BuildProvider",
    "CommandError",
    "TerraformError",
    "TerraformProvider",
]
