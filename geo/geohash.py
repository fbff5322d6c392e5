import math
from collections import namedtuple

BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
BITS = (16, 8, 4, 2, 1)

MIN_PRECISION = 1
MAX_PRECISION = 12
DEFAULT_PRECISION = 6

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = 111.0

# Sample points per half-axis of the search box
GRID_STEPS = 10

# Keyed by direction, then by parity of the cell length
NEIGHBORS = {
    "right": {
        "even": "bc01fg45238967deuvhjyznpkmstqrwx",
        "odd": "p0r21436x8zb9dcf5h7kjnmqesgutwvy",
    },
    "left": {
        "even": "238967debc01fg45kmstqrwxuvhjyznp",
        "odd": "14365h7k9dcfesgujnmqp0r2twvyx8zb",
    },
    "top": {
        "even": "p0r21436x8zb9dcf5h7kjnmqesgutwvy",
        "odd": "bc01fg45238967deuvhjyznpkmstqrwx",
    },
    "bottom": {
        "even": "14365h7k9dcfesgujnmqp0r2twvyx8zb",
        "odd": "238967debc01fg45kmstqrwxuvhjyznp",
    },
}

BORDERS = {
    "right": {"even": "bcfguvyz", "odd": "prxz"},
    "left": {"even": "0145hjnp", "odd": "028b"},
    "top": {"even": "prxz", "odd": "bcfguvyz"},
    "bottom": {"even": "028b", "odd": "0145hjnp"},
}

# Approximate cell radius (km) per precision, for display
PRECISION_RADIUS_KM = {
    3: 156,
    4: 39,
    5: 4.9,
    6: 1.2,
    7: 0.153,
    8: 0.038,
}

GeohashSearch = namedtuple("GeohashSearch", ["cells", "precision", "radius_km", "center"])


class InvalidCellError(ValueError):
    """Raised for geohash strings that are empty or use symbols outside BASE32."""

    def __init__(self, cell):
        super().__init__(f"Invalid geohash cell: {cell!r}")
        self.cell = cell


def _normalize_cell(cell) -> str:
    if not isinstance(cell, str) or not cell:
        raise InvalidCellError(cell)
    cell = cell.lower()
    if any(ch not in BASE32 for ch in cell):
        raise InvalidCellError(cell)
    return cell


def encode(lat: float, lng: float, precision: int = DEFAULT_PRECISION) -> str:
    """
    Encode a coordinate into a geohash of exactly `precision` characters.
    Bits alternate longitude/latitude, starting with longitude.
    """
    if not isinstance(precision, int) or not MIN_PRECISION <= precision <= MAX_PRECISION:
        raise ValueError(f"precision must be between {MIN_PRECISION} and {MAX_PRECISION}")

    lat_range = [-90.0, 90.0]
    lng_range = [-180.0, 180.0]
    chars = []
    is_lng = True
    bit = 0
    ch = 0

    while len(chars) < precision:
        rng, value = (lng_range, lng) if is_lng else (lat_range, lat)
        mid = (rng[0] + rng[1]) / 2
        if value > mid:
            ch |= BITS[bit]
            rng[0] = mid
        else:
            rng[1] = mid

        is_lng = not is_lng
        if bit < 4:
            bit += 1
        else:
            chars.append(BASE32[ch])
            bit = 0
            ch = 0

    return "".join(chars)


def decode(cell: str) -> dict:
    """
    Returns {"lat_range": (min, max), "lng_range": (min, max), "center": (lat, lng)}.
    """
    cell = _normalize_cell(cell)

    lat_range = [-90.0, 90.0]
    lng_range = [-180.0, 180.0]
    is_lng = True

    for symbol in cell:
        value = BASE32.index(symbol)
        for mask in BITS:
            rng = lng_range if is_lng else lat_range
            mid = (rng[0] + rng[1]) / 2
            if value & mask:
                rng[0] = mid
            else:
                rng[1] = mid
            is_lng = not is_lng

    center = ((lat_range[0] + lat_range[1]) / 2, (lng_range[0] + lng_range[1]) / 2)
    return {
        "lat_range": (lat_range[0], lat_range[1]),
        "lng_range": (lng_range[0], lng_range[1]),
        "center": center,
    }


def adjacent(cell: str, direction: str) -> str:
    """
    Neighbouring cell in `direction` (top/bottom/left/right), computed from the
    lookup tables so no precision is lost to a decode/encode round trip.
    Longitude wraps at the antimeridian; latitude wraps at the poles.
    """
    if direction not in NEIGHBORS:
        raise ValueError(f"Unknown direction: {direction!r}")
    cell = _normalize_cell(cell)

    last = cell[-1]
    parity = "odd" if len(cell) % 2 else "even"
    base = cell[:-1]

    if last in BORDERS[direction][parity] and base:
        base = adjacent(base, direction)

    return base + BASE32[NEIGHBORS[direction][parity].index(last)]


def neighbors(cell: str) -> list:
    """All 8 neighbours: right, left, top, bottom, then the four diagonals."""
    right = adjacent(cell, "right")
    left = adjacent(cell, "left")
    return [
        right,
        left,
        adjacent(cell, "top"),
        adjacent(cell, "bottom"),
        adjacent(right, "top"),
        adjacent(right, "bottom"),
        adjacent(left, "top"),
        adjacent(left, "bottom"),
    ]


def precision_for_radius(radius_km: float) -> int:
    # 5-30km and 1-5km share precision 6 so existing indexed cells stay comparable
    if radius_km >= 100:
        return 3
    if radius_km >= 30:
        return 4
    if radius_km >= 5:
        return 6
    if radius_km >= 1:
        return 6
    return 7


def precision_radius_km(precision: int) -> float:
    return PRECISION_RADIUS_KM.get(precision, 0.153)


def haversine_distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def cells_in_radius(center_lat: float, center_lng: float, radius_km: float) -> set:
    """
    Cells to query for a radius search around a point.

    Samples a grid over the bounding box of the radius (1 deg lat ~ 111km,
    longitude scaled by cos(lat)) and encodes each sample. This over-covers
    the circle; callers re-filter candidates with haversine_distance_km.
    """
    precision = precision_for_radius(radius_km)
    radius_km = max(radius_km, 0.0)

    lat_span = radius_km / KM_PER_DEGREE_LAT
    cos_lat = abs(math.cos(math.radians(center_lat)))
    if cos_lat < 1e-9:
        lng_span = 180.0
    else:
        lng_span = min(radius_km / (KM_PER_DEGREE_LAT * cos_lat), 180.0)

    cells = {encode(center_lat, center_lng, precision)}
    if radius_km == 0:
        return cells

    step_lat = lat_span / GRID_STEPS
    step_lng = lng_span / GRID_STEPS
    for i in range(-GRID_STEPS, GRID_STEPS + 1):
        lat = max(-90.0, min(90.0, center_lat + i * step_lat))
        for j in range(-GRID_STEPS, GRID_STEPS + 1):
            lng = center_lng + j * step_lng
            if lng > 180.0:
                lng -= 360.0
            elif lng < -180.0:
                lng += 360.0
            cells.add(encode(lat, lng, precision))

    return cells


def search_cells(center_lat: float, center_lng: float, radius_km: float) -> GeohashSearch:
    return GeohashSearch(
        cells=sorted(cells_in_radius(center_lat, center_lng, radius_km)),
        precision=precision_for_radius(radius_km),
        radius_km=radius_km,
        center=(center_lat, center_lng),
    )


def is_within_radius(center_lat, center_lng, point_lat, point_lng, radius_km) -> bool:
    return haversine_distance_km(center_lat, center_lng, point_lat, point_lng) <= radius_km


def sort_by_distance(origin, points, key=None):
    """
    Sort `points` by distance from `origin` (a (lat, lng) pair).
    `key` maps a point to its (lat, lng); defaults to the point itself.
    Returns a list of (distance_km, point) tuples, nearest first.
    """
    key = key or (lambda p: p)
    scored = []
    for point in points:
        lat, lng = key(point)
        scored.append((haversine_distance_km(origin[0], origin[1], lat, lng), point))
    scored.sort(key=lambda pair: pair[0])
    return scored
