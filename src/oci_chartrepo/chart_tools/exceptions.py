"""Custom exceptions for the OCI chart repository."""

from __future__ import annotations

from typing import Optional, Sequence


class ChartRepoError(Exception):
    """Base exception for OCI chart repository errors."""

    pass


class TransportError(ChartRepoError):
    """Raised on network, DNS, TLS or timeout failures, and on server errors."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class SkipCandidateError(ChartRepoError):
    """Raised when a repository or tag is not visible to the configured credential.

    Covers authorization failures, policy violations and unknown names. The
    affected artifact is skipped; the surrounding enumeration continues.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        codes: Sequence[str] = (),
    ):
        super().__init__(message)
        self.status = status
        self.codes = tuple(codes)


class NotAChartError(ChartRepoError):
    """Raised when an artifact is not a Helm chart."""

    pass


class MalformedArtifactError(ChartRepoError):
    """Raised when a chart artifact or a listing body cannot be read."""

    pass


class ChartNotFoundError(ChartRepoError):
    """Raised when a chart path is not present in the catalog."""

    pass


class InvalidArtifactError(ChartRepoError):
    """Raised when a chart fails validation at download time."""

    pass


class CatalogUnavailableError(ChartRepoError):
    """Raised when the top-level catalog listing fails."""

    pass


class ConfigurationError(ChartRepoError):
    """Raised when local configuration cannot be parsed."""

    pass
