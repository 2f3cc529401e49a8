"""
APARTRACK Validation — Photo Metadata Extraction

Reads the EXIF capture time and GPS position from a submitted photo with
Pillow. Many capture devices strip EXIF, so every field is optional;
missing metadata is reported as None, never as an error.
"""
import hashlib
import io
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from PIL import Image, ExifTags, UnidentifiedImageError

from ..geo import dms_to_decimal, to_utc, ZoneLike

logger = logging.getLogger(__name__)

EXIF_TIME_FORMAT = "%Y:%m:%d %H:%M:%S"


@dataclass
class PhotoMetadata:
    """Metadata carried by a submitted photo. capture_time is aware UTC."""
    capture_time: Optional[datetime] = None
    gps_lat: Optional[float] = None
    gps_lng: Optional[float] = None
    content_hash: Optional[str] = None

    @property
    def has_gps(self) -> bool:
        return usable_coordinate(self.gps_lat, 90) and usable_coordinate(self.gps_lng, 180)


def usable_coordinate(value, limit: float) -> bool:
    """True for a finite number of degrees within +/-limit."""
    if value is None or isinstance(value, bool):
        return False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number) and -limit <= number <= limit


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _parse_capture_time(raw, zone: ZoneLike) -> Optional[datetime]:
    if isinstance(raw, bytes):
        raw = raw.decode("ascii", "ignore")
    if not raw or not isinstance(raw, str):
        return None
    try:
        local = datetime.strptime(raw.strip().rstrip("\x00"), EXIF_TIME_FORMAT)
    except ValueError:
        logger.debug(f"[Photo] Unparseable DateTimeOriginal {raw!r}")
        return None
    # EXIF wall-clock time carries no offset; read it in the site timezone
    return to_utc(local, zone)


def _parse_gps(gps_ifd) -> tuple:
    lat = gps_ifd.get(ExifTags.GPS.GPSLatitude)
    lat_ref = gps_ifd.get(ExifTags.GPS.GPSLatitudeRef)
    lng = gps_ifd.get(ExifTags.GPS.GPSLongitude)
    lng_ref = gps_ifd.get(ExifTags.GPS.GPSLongitudeRef)
    if not lat or not lng:
        return None, None
    try:
        lat_deg = dms_to_decimal(lat, lat_ref or "N")
        lng_deg = dms_to_decimal(lng, lng_ref or "E")
    except (TypeError, ValueError, ZeroDivisionError):
        logger.debug("[Photo] Malformed GPS IFD")
        return None, None
    # 0/0 rationals (no fix) come back from Pillow as NaN
    if not (usable_coordinate(lat_deg, 90) and usable_coordinate(lng_deg, 180)):
        logger.debug(f"[Photo] Unusable GPS position {lat_deg!r}, {lng_deg!r}")
        return None, None
    return lat_deg, lng_deg


def extract_photo_metadata(data: bytes, zone: ZoneLike) -> PhotoMetadata:
    """Hash the photo and pull capture time / GPS from its EXIF block."""
    meta = PhotoMetadata(content_hash=content_hash(data))
    try:
        with Image.open(io.BytesIO(data)) as img:
            exif = img.getexif()
    except (UnidentifiedImageError, OSError) as e:
        logger.info(f"[Photo] Could not read image metadata: {e}")
        return meta

    if not exif:
        return meta

    exif_ifd = exif.get_ifd(ExifTags.IFD.Exif)
    meta.capture_time = _parse_capture_time(exif_ifd.get(ExifTags.Base.DateTimeOriginal), zone)

    gps_ifd = exif.get_ifd(ExifTags.IFD.GPSInfo)
    if gps_ifd:
        meta.gps_lat, meta.gps_lng = _parse_gps(gps_ifd)

    return meta
