"""Local listing quality score, used when the portal's score is unavailable."""

from __future__ import annotations

from src.app.properties.schemas import PropertyRead, QualityScore

# Points the portal always awards for image duplicates and image dimensions
_DUPLICATE_POINTS = 10
_DIMENSION_POINTS = 18
_MAX_POINTS = 49


def local_quality_score(prop: PropertyRead) -> QualityScore:
    """Approximate the portal's quality score from description and images."""
    image_count = len([u for u in [prop.cover_photo, *prop.media_images] if u])
    breakdown = {
        "description": min(10, len(prop.property_description or "") // 100),
        "images": min(6, image_count),
        "image_diversity": min(5, max(1, image_count // 2)) if image_count else 0,
        "duplicates": _DUPLICATE_POINTS,
        "dimensions": _DIMENSION_POINTS,
    }
    value = round(sum(breakdown.values()) / _MAX_POINTS * 100)
    return QualityScore(value=value, source="local", breakdown=breakdown)
