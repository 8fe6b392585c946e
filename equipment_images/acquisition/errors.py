"""Error taxonomy for image acquisition strategies."""


class AcquisitionError(Exception):
    """Base class for acquisition failures; ``kind`` labels the taxonomy bucket."""

    kind = "acquisition_error"


class OracleLowConfidence(AcquisitionError):
    """The oracle had nothing usable to offer. Soft: just nothing to try."""

    kind = "oracle_low_confidence"


class NetworkFailure(AcquisitionError):
    """Invalid URL, timeout, redirect loop or non-2xx terminal status."""

    kind = "network_failure"


class ContentRejected(AcquisitionError):
    """Undersized artifact or a page matching error-page heuristics."""

    kind = "content_rejected"


class ResourceFailure(AcquisitionError):
    """The browser process crashed or disconnected."""

    kind = "resource_failure"


class FileSystemFailure(AcquisitionError):
    """Destination directory could not be created or written."""

    kind = "filesystem_failure"


class InvalidImageError(ValueError):
    """A manually uploaded file is not an acceptable image."""
    pass
