from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy import func

from geo import encode, search_cells, sort_by_distance
from models import db
from models.user import User, BLOOD_GROUPS
from security.services import get_security
from utils.audit import log_event
from utils.auth_context import login_required
from utils.blood import compatible_donor_groups, normalize_blood_group

donors_bp = Blueprint("donors", __name__, url_prefix="/donors")

MAX_SEARCH_RADIUS_KM = 500
MAX_CANDIDATES = 500


def _coordinate_error(lat, lng):
    if lat is None or lng is None:
        return "lat and lng are required"
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        return "Coordinates out of range"
    return None


@donors_bp.put("/location")
@login_required
def update_location():
    data = request.get_json(silent=True) or {}
    try:
        lat = float(data["latitude"])
        lng = float(data["longitude"])
    except (KeyError, TypeError, ValueError):
        return jsonify(error="latitude and longitude must be numbers"), 400

    error = _coordinate_error(lat, lng)
    if error:
        return jsonify(error=error), 400

    precision = current_app.config.get("LOCATION_GEOHASH_PRECISION", 7)
    g.user.latitude = lat
    g.user.longitude = lng
    g.user.location_geohash = encode(lat, lng, precision)
    g.user.location_updated_at = get_security().now()
    db.session.commit()

    log_event("DONOR_LOCATION_UPDATE", user_id=g.user.id, details={"geohash": g.user.location_geohash})
    return jsonify(message="Location updated", location_geohash=g.user.location_geohash), 200


@donors_bp.put("/availability")
@login_required
def update_availability():
    data = request.get_json(silent=True) or {}
    available = data.get("is_available")
    if not isinstance(available, bool):
        return jsonify(error="is_available must be a boolean"), 400

    g.user.is_available = available
    db.session.commit()
    return jsonify(is_available=g.user.is_available), 200


@donors_bp.get("/search")
@login_required
def search_donors():
    lat = request.args.get("lat", type=float)
    lng = request.args.get("lng", type=float)
    radius_km = request.args.get("radius_km", type=float)
    if radius_km is None:
        radius_km = current_app.config.get("DEFAULT_SEARCH_RADIUS_KM", 10)
    blood_group = normalize_blood_group(request.args.get("blood_group"))
    only_available = request.args.get("only_available") == "true"

    error = _coordinate_error(lat, lng)
    if error:
        return jsonify(error=error), 400
    if not 0 < radius_km <= MAX_SEARCH_RADIUS_KM:
        return jsonify(error=f"radius_km must be between 0 and {MAX_SEARCH_RADIUS_KM}"), 400
    if blood_group and blood_group not in BLOOD_GROUPS:
        return jsonify(error="Invalid blood_group"), 400

    search = search_cells(lat, lng, radius_km)

    # Stored geohashes are at least as precise as any search precision,
    # so a prefix of the search length identifies the containing cell.
    q = User.query.filter(
        User.location_geohash.isnot(None),
        User.latitude.isnot(None),
        User.longitude.isnot(None),
        User.id != g.user.id,
        func.substr(User.location_geohash, 1, search.precision).in_(search.cells),
    )
    if blood_group:
        q = q.filter(User.blood_group.in_(compatible_donor_groups(blood_group)))
    if only_available:
        q = q.filter(User.is_available.is_(True))

    candidates = q.limit(MAX_CANDIDATES).all()
    ranked = sort_by_distance((lat, lng), candidates, key=lambda u: (u.latitude, u.longitude))

    donors = [
        {
            "id": donor.id,
            "full_name": donor.full_name,
            "blood_group": donor.blood_group,
            "is_available": donor.is_available,
            "distance_km": round(distance, 2),
        }
        for distance, donor in ranked
        if distance <= radius_km
    ]

    return jsonify(
        donors=donors,
        total=len(donors),
        search={
            "radius_km": radius_km,
            "precision": search.precision,
            "cells": len(search.cells),
            "blood_group": blood_group or None,
            "only_available": only_available,
        },
    ), 200
