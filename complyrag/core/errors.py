from __future__ import annotations


class ComplyError(Exception):
    """Base error for complyrag."""


class ValidationError(ComplyError):
    """Malformed input, e.g. an unknown target status."""


class NotFoundError(ComplyError):
    """Unknown document, version, rule or risk id."""


class PermissionDenied(ComplyError):
    """Caller roles do not grant the requested operation."""


class InvalidTransition(ComplyError):
    """Status change not allowed by the workflow table."""

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        self.current = current
        self.target = target
        super().__init__(message or f"Transition {current} -> {target} is not allowed")


class UpstreamServiceError(ComplyError):
    """Storage, embedding, completion or vector index call failed or timed out."""

    def __init__(self, message: str, *, service: str, retryable: bool = True) -> None:
        self.service = service
        self.retryable = retryable
        super().__init__(message)


class UnsupportedFormatError(ComplyError):
    """Text extraction has no parser for the media type."""


class ParseError(ComplyError):
    """Completion output could not be parsed; absorbed by the suggestion engine."""


class ProviderConfigError(ComplyError):
    """Missing or invalid provider configuration."""


class DatabaseError(ComplyError):
    """Database layer failure."""


class PartialBatchFailure:
    """One document failed inside a batch run; collected, never raised."""

    def __init__(self, document_id: str, message: str) -> None:
        self.document_id = document_id
        self.message = message

    def __repr__(self) -> str:
        return f"PartialBatchFailure(document_id={self.document_id!r}, message={self.message!r})"
