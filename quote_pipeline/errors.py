from __future__ import annotations


class QuotePipelineError(Exception):
    """Base error for the quote ingestion pipeline."""


class TransportError(QuotePipelineError):
    """Provider call timed out or the connection failed."""


class MalformedResponseError(QuotePipelineError):
    """Provider answered, but without a usable price."""


class ResolutionError(QuotePipelineError):
    """Company name lookup failed after all retries."""


class PublishError(QuotePipelineError):
    pass


class PersistenceError(QuotePipelineError):
    pass
