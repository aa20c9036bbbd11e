from __future__ import annotations


class LabIntelligenceError(Exception):
    """Base class for errors raised by lab_intelligence."""


class FHIRClientError(LabIntelligenceError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NoPatientsError(LabIntelligenceError):
    """The data source returned an empty patient population."""


class InputFileError(LabIntelligenceError):
    """A local input file could not be read."""
