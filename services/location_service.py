"""
Location Service.

Validates captured GPS coordinates and compares the applicant's location
with the address on the identity document. Geocoding of the document
address belongs to an external collaborator; this module receives the
resolved coordinates and country.
"""
import logging
import math
from typing import Optional

from models.kyc_models import GPSLocation, LocationVerificationResult
from utils.config import EARTH_RADIUS_KM
from utils.exceptions import ValidationError

logger = logging.getLogger(__name__)


def validate_gps(latitude: float, longitude: float, accuracy: float) -> GPSLocation:
    """
    Validate raw GPS coordinates.

    Raises:
        ValidationError: If latitude, longitude or accuracy is out of range
    """
    if not -90 <= latitude <= 90:
        raise ValidationError("Invalid latitude. Must be between -90 and 90", field="latitude")
    if not -180 <= longitude <= 180:
        raise ValidationError("Invalid longitude. Must be between -180 and 180", field="longitude")
    if accuracy < 0:
        raise ValidationError("Invalid accuracy. Must be positive", field="accuracy")

    return GPSLocation(latitude=latitude, longitude=longitude, accuracy=accuracy)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometers."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def compare_location(
    user_latitude: Optional[float],
    user_longitude: Optional[float],
    document_latitude: Optional[float] = None,
    document_longitude: Optional[float] = None,
    allowed_radius_km: Optional[float] = None,
    user_country: Optional[str] = None,
    document_country: Optional[str] = None,
) -> LocationVerificationResult:
    """
    Compare the applicant's location with the document address.

    Radius comparison is used when ``allowed_radius_km`` > 0 and both
    coordinate pairs are known; otherwise the countries are compared
    (case-insensitive).

    Raises:
        ValidationError: If neither comparison has enough data
    """
    have_user = user_latitude is not None and user_longitude is not None
    have_document = document_latitude is not None and document_longitude is not None

    if allowed_radius_km and allowed_radius_km > 0 and have_user and have_document:
        distance = haversine_km(user_latitude, user_longitude, document_latitude, document_longitude)
        verified = distance <= allowed_radius_km
        message = (
            f"Location is within {allowed_radius_km:g} km of the document address ({distance:.1f} km)"
            if verified
            else f"Location is {distance:.1f} km from the document address (allowed {allowed_radius_km:g} km)"
        )
        logger.info(f"Radius comparison: distance={distance:.2f}km, verified={verified}")
        return LocationVerificationResult(
            verified=verified,
            verification_type="radius",
            distance_km=round(distance, 3),
            allowed_radius_km=allowed_radius_km,
            user_country=user_country,
            document_country=document_country,
            message=message,
        )

    if user_country and document_country:
        verified = user_country.strip().lower() == document_country.strip().lower()
        distance = (
            haversine_km(user_latitude, user_longitude, document_latitude, document_longitude)
            if have_user and have_document else None
        )
        logger.info(f"Country comparison: {user_country} vs {document_country}, verified={verified}")
        return LocationVerificationResult(
            verified=verified,
            verification_type="country",
            distance_km=round(distance, 3) if distance is not None else None,
            user_country=user_country,
            document_country=document_country,
            message=(
                f"Location country matches document country ({document_country})"
                if verified
                else f"Location country ({user_country}) does not match document country ({document_country})"
            ),
        )

    raise ValidationError(
        "Location comparison needs an allowed radius with both coordinate pairs, or both countries",
        details={
            "has_user_coordinates": have_user,
            "has_document_coordinates": have_document,
            "allowed_radius_km": allowed_radius_km,
        },
    )
