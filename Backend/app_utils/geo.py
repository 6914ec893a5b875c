import math
import logging
from typing import NamedTuple

import requests

from app_utils.constants import EARTH_RADIUS_METERS
from errors import InvalidInput

logger = logging.getLogger(__name__)


class Coordinate(NamedTuple):
    latitude: float
    longitude: float


class BoundingBox(NamedTuple):
    """
    Coarse lat/lon window. When `wraps` is set the box crosses the
    antimeridian and covers lon >= min_lon OR lon <= max_lon.
    """
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float
    wraps: bool = False

    def contains(self, lat, lon):
        if not (self.min_lat <= lat <= self.max_lat):
            return False
        if self.wraps:
            return lon >= self.min_lon or lon <= self.max_lon
        return self.min_lon <= lon <= self.max_lon


def validate_coordinate(lat, lon):
    """Return a Coordinate or raise InvalidInput for out-of-range / non-numeric values."""
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        raise InvalidInput(f"Coordinate must be numeric, got ({lat!r}, {lon!r})")

    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidInput("Coordinate must be finite")
    if not -90.0 <= lat <= 90.0:
        raise InvalidInput(f"Latitude {lat} outside [-90, 90]")
    if not -180.0 <= lon <= 180.0:
        raise InvalidInput(f"Longitude {lon} outside [-180, 180]")
    return Coordinate(lat, lon)


def calculate_distance(lat1, lon1, lat2, lon2):
    """
    Calculate the great circle distance between two points
    on the earth (specified in decimal degrees)
    Returns distance in meters.
    """
    if lat1 is None or lon1 is None or lat2 is None or lon2 is None:
        return float('inf')

    if lat1 == lat2 and lon1 == lon2:
        return 0.0

    # Convert decimal degrees to radians
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])

    # Haversine formula
    dlon = lon2 - lon1
    dlat = lat2 - lat1
    a = math.sin(dlat/2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2)**2
    # Rounding can push `a` a hair outside [0, 1]
    a = min(1.0, max(0.0, a))
    c = 2 * math.asin(math.sqrt(a))
    return c * EARTH_RADIUS_METERS


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    return calculate_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def bounding_box(center: Coordinate, radius_m: float) -> BoundingBox:
    """
    Smallest lat/lon window guaranteed to hold every point within
    `radius_m` (haversine) of `center`. Only used to narrow candidates;
    exact distance is always computed afterwards.
    """
    angular = radius_m / EARTH_RADIUS_METERS
    dlat = math.degrees(angular) + 1e-9

    min_lat = center.latitude - dlat
    max_lat = center.latitude + dlat

    # Touching a pole: every longitude is within reach
    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0)

    widest = math.radians(max(abs(min_lat), abs(max_lat)))
    ratio = math.sin(angular) / math.cos(widest)
    if ratio >= 1.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    dlon = math.degrees(math.asin(ratio)) + 1e-9
    if dlon >= 180.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    min_lon = center.longitude - dlon
    max_lon = center.longitude + dlon
    wraps = False
    if min_lon < -180.0:
        min_lon += 360.0
        wraps = True
    if max_lon > 180.0:
        max_lon -= 360.0
        wraps = True
    return BoundingBox(min_lat, max_lat, min_lon, max_lon, wraps)


def get_address_details(lat, lon, timeout=5):
    """
    Get a human readable address for a coordinate using Nominatim reverse geocoding.
    Never raises: a failed lookup returns blank fields.
    """
    blank = {"area": "-", "district": "-", "full_address": ""}
    if lat is None or lon is None:
        return blank

    try:
        response = requests.get(
            "https://nominatim.openstreetmap.org/reverse",
            params={"format": "json", "lat": lat, "lon": lon, "zoom": 18, "addressdetails": 1},
            headers={'User-Agent': 'Civic-Ticket-Dedup/1.0'},
            timeout=timeout,
        )
        if response.status_code == 200:
            data = response.json()
            address = data.get('address', {})

            # Area can be suburb, neighbourhood, city_district, or town
            area = address.get('suburb') or address.get('neighbourhood') or address.get('city_district') or address.get('town') or address.get('village') or '-'

            # District is usually 'county' or 'state_district' in Nominatim for India
            district = address.get('state_district') or address.get('county') or address.get('district') or '-'

            return {
                "area": area,
                "district": district,
                "full_address": data.get('display_name', '')
            }
        logger.warning(f"Geocoding returned HTTP {response.status_code} for ({lat}, {lon})")
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Geocoding error: {e}")

    return blank
