from .geohash import (
    BASE32,
    GeohashSearch,
    InvalidCellError,
    adjacent,
    cells_in_radius,
    decode,
    encode,
    haversine_distance_km,
    is_within_radius,
    neighbors,
    precision_for_radius,
    precision_radius_km,
    search_cells,
    sort_by_distance,
)
