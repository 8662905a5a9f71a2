"""Error taxonomy for demo ingestion, calibration and session handling."""


class RadarError(Exception):
    """Base class for all demo-radar errors."""


class StartupError(RadarError):
    """Missing or invalid demo path, unreadable file, bad configuration."""


class DecodeError(RadarError):
    """Malformed or truncated demo content reported by the decoder."""


class CalibrationError(RadarError):
    """Map calibration could not be resolved."""


class MetadataUnavailable(CalibrationError):
    """Metadata source unreachable, non-200 response or malformed document."""


class MapEntryNotFound(CalibrationError):
    """The metadata document has no entry for the requested map."""


class SessionIOError(RadarError):
    """Read/write failure or cancellation inside a single session."""
