"""Custom exception classes for snrna-flow."""

from __future__ import annotations


class SnrnaFlowError(Exception):
    """Base exception for all snrna-flow errors."""
    pass


class ConfigurationError(SnrnaFlowError):
    """Raised for configuration-related errors (missing inputs, bad manifest)."""
    pass


class ValidationError(SnrnaFlowError):
    """Raised when pre-flight input validation fails."""
    pass


class FileOperationError(SnrnaFlowError):
    """Raised for file reading or writing errors."""
    pass


class MalformedKeyError(SnrnaFlowError):
    """Raised when a sample id does not follow the ``<patient>_<suffix>`` convention."""

    def __init__(self, sample_id: str, message: str | None = None) -> None:
        self.sample_id = sample_id
        super().__init__(
            message or f"Sample id '{sample_id}' does not match the '<patient>_<suffix>' convention"
        )


class StageExecutionError(SnrnaFlowError):
    """Raised when an external stage fails for a given key."""

    def __init__(
        self,
        stage: str,
        group_label: str,
        group_id: str,
        message: str,
        returncode: int | None = None,
    ) -> None:
        self.stage = stage
        self.group_label = group_label
        self.group_id = group_id
        self.returncode = returncode
        super().__init__(f"[{stage}] {group_label}/{group_id}: {message}")
