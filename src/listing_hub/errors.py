"""Exception taxonomy for reconciliation, description generation and the queue."""

from __future__ import annotations


class RecordRejectedError(Exception):
    """A single raw record cannot be reconciled.

    Record-level: the record is marked processed and the rest of the batch
    proceeds.
    """


class RawDataValidationError(RecordRejectedError):
    """Raw payload is missing required fields or fails quality filters."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class DimensionResolutionError(RecordRejectedError):
    """A resolved region/city/area id could not be re-read."""


class BatchAbortedError(Exception):
    """A reconciliation batch was rolled back in full.

    Carries enough context to replay the batch.
    """

    def __init__(self, batch_id: str, raw_ids: list[int], cause: BaseException) -> None:
        super().__init__(f"batch {batch_id} rolled back: {type(cause).__name__}: {cause}")
        self.batch_id = batch_id
        self.raw_ids = raw_ids
        self.cause = cause


class DescriptionGenerationError(Exception):
    """The AI description collaborator did not produce a usable description."""


class DescriptionFormatError(DescriptionGenerationError):
    """The model response was not a JSON array of strings."""


class DescriptionUnavailableError(DescriptionGenerationError):
    """The model API is unavailable, or calls to it are paused after repeated outages."""


class InvalidMessageError(Exception):
    """A queue message failed validation."""
