"""Exceptions raised by the retrieval core and its adapters."""


class SecouristError(Exception):
    """Base class for every error raised by this package."""


class ExternalServiceError(SecouristError, RuntimeError):
    """An embedding, store or generation call failed.

    Orchestration code (ingestion loop, hybrid merge) catches it, logs it
    and moves on.
    """


class ConfigurationError(SecouristError, ValueError):
    """Required credentials or endpoints are missing. Fatal at startup."""


class InvalidQueryError(SecouristError, ValueError):
    """The question submitted to the query pipeline is empty."""
