"""
Error taxonomy for the visual search pipeline.

ValidationError and NotFoundError map to 400 and 404 responses. OracleError is
raised by similarity providers and is always recovered by the caller with a
fallback score, so it never reaches an HTTP client.
"""


class VisualSearchError(Exception):
    """Base class for all application errors."""
    status_code = 500


class ValidationError(VisualSearchError):
    """Bad upload, malformed request body or query parameter."""
    status_code = 400


class NotFoundError(VisualSearchError):
    """Unknown search session or product."""
    status_code = 404


class OracleError(VisualSearchError):
    """Similarity provider failed (transport, quota, unparseable answer)."""
