"""
Loss domain classification.

Decides which damage domain a claim belongs to from its loss type and
description, using photo and file names as roof/interior evidence. The
domain gates which arguments strategic output may use.
"""

import re
from typing import Any, Dict, List, Optional

from .models import LossDomainClassification

FIRE = re.compile(r"fire|smoke|burn|char|flame|arson", re.IGNORECASE)
THEFT = re.compile(r"theft|vandal|break.?in|stolen|burglary", re.IGNORECASE)
VEHICLE = re.compile(r"vehicle|car|truck|auto|collision|impact", re.IGNORECASE)
WATER = re.compile(r"water|flood|pipe|leak|plumb|sewer|overflow|burst|mold|moisture", re.IGNORECASE)
ROOF_AS_WATER_SOURCE = re.compile(r"roof.*leak|leak.*roof|roof.*water|water.*roof|roof.*drip", re.IGNORECASE)
HAIL = re.compile(r"hail", re.IGNORECASE)
WIND = re.compile(r"wind|hurricane|tornado|cyclone", re.IGNORECASE)
ROOF = re.compile(r"roof", re.IGNORECASE)
ROOF_OR_SHINGLE = re.compile(r"roof|shingle", re.IGNORECASE)
EXTERIOR = re.compile(r"roof|shingle|gutter|siding|exterior|fascia|soffit", re.IGNORECASE)


def _is_roof_photo(photo: Dict[str, Any]) -> bool:
    category = (photo.get("category") or "").lower()
    name = (photo.get("file_name") or "").lower()
    return "roof" in category or "roof" in name or "shingle" in name


def _is_interior_photo(photo: Dict[str, Any]) -> bool:
    category = (photo.get("category") or "").lower()
    name = (photo.get("file_name") or "").lower()
    return (
        "interior" in category
        or any(word in name for word in ("interior", "ceiling", "wall", "floor"))
    )


def _water(combined: str, has_roof_evidence: bool) -> LossDomainClassification:
    roof_is_source = bool(ROOF_AS_WATER_SOURCE.search(combined))

    if roof_is_source and has_roof_evidence:
        return LossDomainClassification(
            domain="interior_water",
            confidence="confirmed",
            roof_involvement="confirmed",
            reasoning="Water damage with confirmed roof involvement based on description and evidence",
        )
    if roof_is_source or has_roof_evidence:
        return LossDomainClassification(
            domain="interior_water",
            confidence="probable",
            roof_involvement="possible",
            reasoning="Water damage with possible roof involvement, needs confirmation",
            unanswered_questions=[
                "Has a roof inspection confirmed the water entry point?",
                "Is there visible roof damage directly above the interior water damage?",
                "Could the water source be plumbing, HVAC condensation, or appliance failure instead?",
            ],
        )
    return LossDomainClassification(
        domain="interior_water",
        confidence="confirmed",
        roof_involvement="none",
        reasoning="Water damage with no evidence of roof involvement",
    )


def _wind(combined: str, roof_photos: List[Dict[str, Any]], interior_photos: List[Dict[str, Any]]) -> LossDomainClassification:
    roof_mentioned = bool(ROOF_OR_SHINGLE.search(combined))

    if interior_photos and not roof_photos and not roof_mentioned:
        return LossDomainClassification(
            domain="wind_only",
            confidence="probable",
            roof_involvement="possible",
            reasoning="Wind damage claimed but only interior evidence found. Roof involvement unconfirmed.",
            unanswered_questions=[
                "Has the roof been inspected for wind damage?",
                "Is the interior damage from wind-driven rain through a roof breach, or from windows/doors?",
            ],
        )
    return LossDomainClassification(
        domain="wind_only",
        confidence="confirmed",
        roof_involvement="confirmed" if roof_photos or roof_mentioned else "possible",
        reasoning="Wind damage, checking for roof/exterior involvement",
        unanswered_questions=(
            [] if roof_photos
            else ["Has a roof inspection been performed to confirm wind damage to roof system?"]
        ),
    )


def classify_loss_domain(
    claim: Dict[str, Any],
    photos: Optional[List[Dict[str, Any]]] = None,
    files: Optional[List[Dict[str, Any]]] = None
) -> LossDomainClassification:
    """
    Classify a claim's loss domain.

    Rules are checked in priority order: fire/smoke, theft/vandalism,
    vehicle impact, water, hail, wind, roof/exterior, then mixed evidence,
    falling back to ``unknown``.
    """
    photos = photos or []
    files = files or []
    loss_type = claim.get("loss_type") or ""
    combined = f"{loss_type.lower()} {(claim.get('loss_description') or '').lower()}"

    roof_photos = [photo for photo in photos if _is_roof_photo(photo)]
    interior_photos = [photo for photo in photos if _is_interior_photo(photo)]
    file_names = " ".join((file.get("file_name") or "").lower() for file in files)

    if FIRE.search(combined):
        return LossDomainClassification(
            domain="fire_smoke",
            confidence="confirmed",
            roof_involvement="possible" if ROOF.search(combined) else "none",
            reasoning=f'Loss type "{loss_type}" and description indicate fire/smoke damage',
        )

    if THEFT.search(combined):
        return LossDomainClassification(
            domain="theft_vandalism",
            confidence="confirmed",
            roof_involvement="none",
            reasoning=f'Loss type "{loss_type}" indicates theft/vandalism',
        )

    if VEHICLE.search(combined):
        return LossDomainClassification(
            domain="vehicle_impact",
            confidence="confirmed",
            roof_involvement="none",
            reasoning=f'Loss type "{loss_type}" indicates vehicle impact',
        )

    if WATER.search(combined):
        return _water(combined, bool(roof_photos) or bool(ROOF.search(file_names)))

    if HAIL.search(combined):
        return LossDomainClassification(
            domain="hail",
            confidence="confirmed",
            roof_involvement="confirmed",
            reasoning="Hail damage, roof/exterior involvement inherent",
        )

    if WIND.search(combined):
        return _wind(combined, roof_photos, interior_photos)

    if EXTERIOR.search(combined):
        return LossDomainClassification(
            domain="roof_exterior",
            confidence="confirmed",
            roof_involvement="confirmed",
            reasoning="Explicitly roof/exterior claim",
        )

    if interior_photos and roof_photos:
        return LossDomainClassification(
            domain="mixed",
            confidence="probable",
            roof_involvement="confirmed",
            reasoning="Both interior and roof/exterior evidence present",
        )

    return LossDomainClassification(
        domain="unknown",
        confidence="conditional",
        roof_involvement="unknown",
        reasoning=(
            f'Loss type "{loss_type or "not specified"}" does not clearly map to a domain. '
            "Manual classification recommended."
        ),
        unanswered_questions=[
            "What is the primary area of damage (roof/exterior, interior, or both)?",
            "What peril caused the damage?",
        ],
    )
