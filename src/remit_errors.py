from typing import Optional

from remit_models import LoopLevel


class RemittanceError(Exception):
    """Base error for 835 remittance loading."""


class SinkFailure(RemittanceError):
    """
    The sink reported an error while persisting a segment. Fatal for the
    current transaction; the original exception is chained as __cause__.
    """

    def __init__(self, segment_name: str, level: LoopLevel, line_number: Optional[int] = None, detail: str = ""):
        self.segment_name = segment_name
        self.level = level
        self.line_number = line_number
        location = f" (line {line_number})" if line_number is not None else ""
        message = f"Sink failed while writing '{segment_name}' in {level.label}{location}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class SettingsError(RemittanceError):
    """A settings file exists but could not be read or validated."""
