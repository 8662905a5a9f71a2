"""Map calibration metadata: origin offset and scale for each radar image version."""
import math
import re
from dataclasses import dataclass
from typing import Any, Optional

import requests
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import MapEntryNotFound, MetadataUnavailable

DEFAULT_METADATA_URL = "https://radar-overviews.csgo.saiko.tech/{map_name}/{checksum}/info.json"
DEFAULT_TIMEOUT = 10.0
MAX_CHECKSUM = 0xFFFFFFFF

# Map names end up in a URL path segment
_SAFE_MAP_NAME_RE = re.compile(r"^[a-zA-Z0-9_\-\.]+$")


@dataclass(frozen=True)
class MapCalibration:
    """Calibration for one map version. Immutable, shared read-only by all sessions."""
    map_name: str
    origin_x: float
    origin_y: float
    scale: float

    def __post_init__(self) -> None:
        for value in (self.origin_x, self.origin_y, self.scale):
            if not math.isfinite(value):
                raise ValueError(f"calibration values must be finite, got {value!r}")
        if self.scale <= 0:
            raise ValueError(f"calibration scale must be > 0, got {self.scale!r}")

    def to_dict(self) -> dict:
        """Wire form, using the metadata document's field names."""
        return {
            "map_name": self.map_name,
            "pos_x": self.origin_x,
            "pos_y": self.origin_y,
            "scale": self.scale,
        }


class CalibrationRecord(BaseModel):
    """One entry of info.json. Values arrive as decimal strings ("-2476", "4.4")."""
    pos_x: float = Field(allow_inf_nan=False)
    pos_y: float = Field(allow_inf_nan=False)
    scale: float = Field(gt=0, allow_inf_nan=False)

    @field_validator("pos_x", "pos_y", "scale", mode="before")
    @classmethod
    def _reject_bool(cls, value: Any) -> Any:
        # JSON true/false would otherwise coerce to 1.0/0.0
        if isinstance(value, bool):
            raise ValueError("must be a number, not a boolean")
        return value


def radar_image_name(map_name: str) -> str:
    """File name of the overview image for a map, e.g. de_dust2_radar.png."""
    return f"{map_name.lower()}_radar.png"


def parse_calibration(document: Any, map_name: str) -> MapCalibration:
    """Pick the entry for map_name out of a decoded info.json document."""
    if not isinstance(document, dict):
        raise MetadataUnavailable(
            f"metadata document must be a JSON object, got {type(document).__name__}"
        )
    if map_name not in document:
        raise MapEntryNotFound(f"failed to get map info.json entry for {map_name!r}")
    try:
        record = CalibrationRecord.model_validate(document[map_name])
    except ValidationError as e:
        raise MetadataUnavailable(f"malformed metadata entry for {map_name!r}: {e}") from e
    return MapCalibration(
        map_name=map_name,
        origin_x=record.pos_x,
        origin_y=record.pos_y,
        scale=record.scale,
    )


class MapCalibrationResolver:
    """Fetches calibration for an exact map version (name + checksum).

    One GET per resolve() call and no retries: a failure is fatal to the
    ingestion phase, and substituting a default calibration would silently
    corrupt every derived coordinate.
    """

    def __init__(
        self,
        url_template: str = DEFAULT_METADATA_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url_template = url_template
        self.timeout = timeout
        self.session = session or requests.Session()

    def metadata_url(self, map_name: str, checksum: int) -> str:
        if not _SAFE_MAP_NAME_RE.match(map_name or ""):
            raise MapEntryNotFound(f"map name {map_name!r} cannot address a metadata document")
        if not 0 <= checksum <= MAX_CHECKSUM:
            raise ValueError(f"checksum must be a uint32, got {checksum!r}")
        return self.url_template.format(map_name=map_name, checksum=checksum)

    def fetch_document(self, url: str) -> Any:
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise MetadataUnavailable(f"metadata request to {url} failed: {e}") from e
        try:
            if resp.status_code != 200:
                raise MetadataUnavailable(f"metadata request to {url} returned HTTP {resp.status_code}")
            try:
                return resp.json()
            except ValueError as e:
                raise MetadataUnavailable(f"metadata at {url} is not valid JSON: {e}") from e
        finally:
            resp.close()

    def resolve(self, map_name: str, checksum: int) -> MapCalibration:
        """Resolve calibration for map_name at the version identified by checksum.

        Raises:
            MetadataUnavailable: source unreachable, non-200 or malformed data
            MapEntryNotFound: the document has no entry for map_name
        """
        url = self.metadata_url(map_name, checksum)
        return parse_calibration(self.fetch_document(url), map_name)
