from __future__ import annotations


class CropEngineError(Exception):
    """Base class for failures scoped to a single edit record."""


class InvalidSourceError(CropEngineError, ValueError):
    pass


class UnknownRecordError(CropEngineError, KeyError):
    def __init__(self, record_id: str):
        super().__init__(record_id)
        self.record_id = record_id

    def __str__(self) -> str:
        return f"unknown record id: {self.record_id!r}"


class SourceUnavailableError(CropEngineError):
    pass


class InvalidTransitionError(CropEngineError):
    pass


class EncoderError(CropEngineError):
    pass
