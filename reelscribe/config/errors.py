"""Errors raised while loading reelscribe configuration files."""

from pathlib import Path
from typing import Any, Optional

from reelscribe.modules.errors import ReelscribeError


class ConfigLoadError(ReelscribeError):
    """Base class for configuration file problems."""


class YAMLParseError(ConfigLoadError):
    """
    Raised when YAML parsing fails.

    Provides line number and column if available.
    """

    def __init__(
        self,
        message: str,
        file_path: Optional[Path] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        self.file_path = file_path
        self.line = line
        self.column = column

        context = {}
        if file_path:
            context["file"] = str(file_path)
        if line is not None:
            context["line"] = line
        if column is not None:
            context["column"] = column

        suggestion = "Check YAML syntax: indentation, colons, quotes"
        if line:
            suggestion = f"Check line {line} for syntax errors"

        super().__init__(message, context=context, suggestion=suggestion)


class SettingsValidationError(ConfigLoadError):
    """A value in the configuration file failed schema validation."""

    def __init__(
        self,
        message: str,
        field_path: Optional[str] = None,
        actual_value: Any = None,
        source_file: Optional[Path] = None,
    ):
        self.field_path = field_path
        self.actual_value = actual_value

        context = {}
        if field_path:
            context["field"] = field_path
        if actual_value is not None:
            context["actual_value"] = actual_value
        if source_file:
            context["file"] = str(source_file)

        suggestion = None
        if field_path:
            suggestion = f"Fix or remove '{field_path}'; run with --print-config to see valid keys"

        super().__init__(message, context=context, suggestion=suggestion)
