from enum import Enum


class Category(str, Enum):
    POTHOLE = "Pothole"
    GARBAGE = "Garbage"
    WATER_LEAK = "WaterLeak"
    STREET_LIGHT = "StreetLight"


class TicketStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    RESOLVED = "Resolved"
    DISPUTED = "Disputed"


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


def normalize_key(value):
    """Lowercase and drop spaces, dashes and underscores: 'Garbage Pile' -> 'garbagepile'."""
    return value.strip().lower().replace(" ", "").replace("-", "").replace("_", "")


# ---------------- Category Aliases ----------------
# Keys are normalize_key() output; covers the labels the citizen app sends.
CATEGORY_ALIASES = {
    # Roads
    "pothole": Category.POTHOLE,
    "potholes": Category.POTHOLE,
    "pathholes": Category.POTHOLE,

    # Sanitation
    "garbage": Category.GARBAGE,
    "garbagepile": Category.GARBAGE,
    "garbageoverflow": Category.GARBAGE,

    # Water
    "waterleak": Category.WATER_LEAK,
    "waterleakage": Category.WATER_LEAK,

    # Electrical
    "streetlight": Category.STREET_LIGHT,
    "streetlights": Category.STREET_LIGHT,
}

STATUS_ALIASES = {normalize_key(s.value): s for s in TicketStatus}

ROLE_ALIASES = {normalize_key(r.value): r for r in Role}


# ---------------- Deduplication Defaults ----------------
DEFAULT_MERGE_THRESHOLD = 25.0   # meters
EARTH_RADIUS_METERS = 6371000
LOCK_GRID_DEGREES = 0.001        # ~111 m of latitude per lock cell

TICKET_ID_PREFIX = "CIV"
