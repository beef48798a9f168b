"""Errors that cross the conversion boundary."""

from dataclasses import dataclass


@dataclass
class AdmissionError(ValueError):
    """Raised when a conversion request is rejected before processing."""

    message: str

    def __post_init__(self) -> None:
        """Initialize the base exception with the message."""
        super().__init__(self.message)


@dataclass
class AssemblyError(RuntimeError):
    """Raised when the merged PDF cannot be produced."""

    message: str

    def __post_init__(self) -> None:
        """Initialize the base exception with the message."""
        super().__init__(self.message)
