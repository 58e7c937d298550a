"""Submodule containing layout validation and firmware source generation."""

from .config_merge import ConfigMerger
from .generator import Artifacts, FirmwareGenerator, generate
from .validation import (
    LayoutValidator,
    Severity,
    ValidationError,
    ValidationFailed,
    ValidationKind,
    ValidationReport,
)

__all__ = [
    "Artifacts",
    "ConfigMerger",
    "FirmwareGenerator",
    "LayoutValidator",
    "Severity",
    "ValidationError",
    "ValidationFailed",
    "ValidationKind",
    "ValidationReport",
    "generate",
]
