"""Listing field mapping between internal properties and Property Finder listings.

Defines:
- Vocabulary tables (type, furnishing, emirate, purpose, rental period) used
  to translate free-text catalog values into the portal's controlled values.
- AMENITY_ALLOWLIST: amenity slugs the portal accepts.
- LISTING_FIELD_MAP: every ListingPayload field and the catalog field(s) it
  is built from.
- to_listing_payload(): PropertyRead -> ListingPayload (pure, never fails).
- merge_listing(): fetch-merge-push merge for full-replace updates.
- from_portal_listing(): PortalListing -> catalog column values (import path).
- agent_from_portal_user(): portal user -> AgentUpsert (agent import).
"""

from __future__ import annotations

import re
from typing import Any

from src.app.portal.schemas import (
    EntityRef,
    ImageRef,
    ListingCompliance,
    ListingImage,
    ListingMedia,
    ListingPayload,
    ListingPrice,
    LocalizedText,
    PortalListing,
)
from src.app.properties.schemas import AgentUpsert, PropertyRead


# ── Vocabulary Tables ──────────────────────────────────────────────────────
# Keys are normalized (lowercase, spaces -> hyphens). Unknown values pass
# through unchanged, except the emirate which falls back to DEFAULT_EMIRATE.

PROPERTY_TYPE_MAP: dict[str, str] = {
    "apartment": "apartment",
    "villa": "villa",
    "townhouse": "townhouse",
    "penthouse": "penthouse",
    "duplex": "duplex",
    "compound": "compound",
    "bungalow": "bungalow",
    "hotel-apartment": "hotel-apartment",
    "full-floor": "full-floor",
    "half-floor": "half-floor",
    "whole-building": "whole-building",
    "bulk-rent-unit": "bulk-rent-unit",
    "land": "land",
    "farm": "farm",
    "office": "office-space",
    "office-space": "office-space",
    "retail": "retail",
    "shop": "shop",
    "show-room": "show-room",
    "warehouse": "warehouse",
    "labor-camp": "labor-camp",
    "factory": "factory",
    "business-centre": "business-centre",
    "co-working-space": "co-working-space",
}

# Portal types whose catalog name differs
REVERSE_PROPERTY_TYPE_MAP: dict[str, str] = {
    "office-space": "office",
}

LAND_TYPES = frozenset({"land", "farm"})

FURNISHING_MAP: dict[str, str] = {
    "unfurnished": "unfurnished",
    "semi-furnished": "semi-furnished",
    "semi_furnished": "semi-furnished",
    "partly-furnished": "semi-furnished",
    "furnished": "furnished",
}
DEFAULT_FURNISHING = "unfurnished"

EMIRATE_MAP: dict[str, str] = {
    "dubai": "dubai",
    "abu-dhabi": "abu_dhabi",
    "abudhabi": "abu_dhabi",
    "abu_dhabi": "abu_dhabi",
    "northern-emirates": "northern_emirates",
    "northern_emirates": "northern_emirates",
    "sharjah": "northern_emirates",
    "ajman": "northern_emirates",
    "ras-al-khaimah": "northern_emirates",
    "fujairah": "northern_emirates",
    "umm-al-quwain": "northern_emirates",
}
DEFAULT_EMIRATE = "dubai"

REVERSE_EMIRATE_MAP: dict[str, str] = {
    "dubai": "Dubai",
    "abu_dhabi": "Abu Dhabi",
    "northern_emirates": "Northern Emirates",
}

PURPOSE_MAP: dict[str, str] = {
    "sale": "sale",
    "sell": "sale",
    "buy": "sale",
    "rent": "rent",
    "lease": "rent",
}
DEFAULT_PURPOSE = "sale"

RENTAL_PERIOD_MAP: dict[str, str] = {
    "yearly": "yearly",
    "year": "yearly",
    "annual": "yearly",
    "annually": "yearly",
    "monthly": "monthly",
    "month": "monthly",
    "weekly": "weekly",
    "week": "weekly",
    "daily": "daily",
    "day": "daily",
}
DEFAULT_RENTAL_PERIOD = "yearly"
RENTAL_PRICE_TYPES = frozenset({"rent", "yearly", "monthly", "weekly", "daily"})

PROJECT_STATUSES = frozenset({"completed", "off_plan", "completed_primary", "off_plan_primary"})

AMENITY_ALLOWLIST = frozenset({
    "central-ac", "built-in-wardrobes", "kitchen-appliances", "security",
    "concierge", "private-gym", "shared-gym", "private-jacuzzi", "shared-spa",
    "covered-parking", "maids-room", "barbecue-area", "shared-pool",
    "childrens-pool", "private-garden", "private-pool", "view-of-water",
    "walk-in-closet", "lobby-in-building", "electricity", "waters",
    "sanitation", "no-services", "fixed-phone", "fibre-optics",
    "flood-drainage", "balcony", "networked", "view-of-landmark",
    "dining-in-building", "conference-room", "study", "maid-service",
    "childrens-play-area", "pets-allowed", "vastu-compliant",
})

# ── Text Normalization Limits ──────────────────────────────────────────────

TITLE_MIN_LENGTH = 30
TITLE_MAX_LENGTH = 50
DESCRIPTION_MIN_LENGTH = 750
DESCRIPTION_MAX_LENGTH = 2000

# Keys the merged update always takes from the local payload
LOCAL_PRECEDENCE_KEYS = ("title", "description", "price", "location", "compliance", "media")

# Server-managed listing keys that are not resent on update
READ_ONLY_LISTING_KEYS = frozenset({
    "id", "state", "portals", "qualityScore", "verificationStatus",
    "createdAt", "updatedAt", "publishedAt",
})

# ── Field Map ──────────────────────────────────────────────────────────────
# ListingPayload field -> catalog field(s) it is derived from.

LISTING_FIELD_MAP: dict[str, tuple[str, ...]] = {
    "category": ("category",),
    "type": ("property_type",),
    "furnishing_type": ("furnishing_type",),
    "reference": ("reference", "id"),
    "title": ("property_title", "property_type", "address"),
    "description": ("property_description", "property_title"),
    "size": ("area",),
    "price": ("price", "purpose", "rental_period"),
    "uae_emirate": ("emirate",),
    "compliance": ("permit_number", "emirate"),
    "location": ("external_location_id",),
    "created_by": ("assigned_agent_id",),
    "assigned_to": ("assigned_agent_id",),
    "bedrooms": ("bedrooms",),
    "bathrooms": ("bathrooms",),
    "media": ("cover_photo", "media_images"),
    "amenities": ("amenities",),
    "project_status": ("project_status", "purpose"),
    "unit_number": ("unit_number",),
    "floor_number": ("floor_number",),
    "parking_slots": ("parking_spaces",),
    "available_from": ("available_from",),
    "plot_size": ("plot_area",),
    "developer": ("developer",),
    "finishing_type": ("finishing_type",),
}


# ── Vocabulary Helpers ─────────────────────────────────────────────────────


def _key(value: str) -> str:
    return value.strip().lower().replace(" ", "-")


def _lookup(table: dict[str, str], value: str | None, default: str) -> str:
    """Map ``value`` through ``table``; unknown values pass through as given."""
    if not value or not value.strip():
        return default
    return table.get(_key(value), value)


def map_property_type(value: str | None) -> str:
    return _lookup(PROPERTY_TYPE_MAP, value, "apartment")


def map_purpose(value: str | None) -> str:
    return _lookup(PURPOSE_MAP, value, DEFAULT_PURPOSE)


def map_rental_period(value: str | None) -> str:
    return _lookup(RENTAL_PERIOD_MAP, value, DEFAULT_RENTAL_PERIOD)


def map_furnishing(value: str | None) -> str:
    return _lookup(FURNISHING_MAP, value, DEFAULT_FURNISHING)


def map_emirate(value: str | None) -> str:
    """Map an emirate name to the portal region. Unknown names -> dubai."""
    if not value:
        return DEFAULT_EMIRATE
    return EMIRATE_MAP.get(_key(value), DEFAULT_EMIRATE)


def is_land_type(value: str | None) -> bool:
    return bool(value) and _key(value) in LAND_TYPES


def filter_amenities(amenities: list[str]) -> list[str]:
    """Slugify amenity names and keep only those on the allow-list."""
    result: list[str] = []
    for name in amenities:
        if not isinstance(name, str):
            continue
        slug = _key(name)
        if slug in AMENITY_ALLOWLIST and slug not in result:
            result.append(slug)
    return result


def normalize_project_status(value: str | None) -> str | None:
    if not value:
        return None
    status = value.strip().lower().replace("-", "_").replace(" ", "_")
    return status if status in PROJECT_STATUSES else None


# ── Text Normalization ─────────────────────────────────────────────────────


def build_title(prop: PropertyRead) -> str:
    """Listing title, space-padded/truncated into [30, 50] characters."""
    title = (prop.property_title or "").strip()
    if not title:
        title = f"{prop.property_type or 'Property'} in {prop.address or 'UAE'}"
    return title.ljust(TITLE_MIN_LENGTH)[:TITLE_MAX_LENGTH]


def _description_filler(prop: PropertyRead, purpose: str) -> str:
    location = prop.address or prop.emirate or "UAE"
    offering = "rent" if purpose == "rent" else "sale"
    area = prop.area if prop.area is not None else 0
    return (
        f" This {prop.property_type or 'property'} is located in {location}."
        f" It offers {prop.bedrooms or 0} bedrooms and {prop.bathrooms or 0} bathrooms"
        f" with a total area of {area} sq.ft."
        f" This listing is available for {offering}."
        " Contact us for more details about this excellent opportunity."
    )


def build_description(prop: PropertyRead, purpose: str) -> str:
    """Listing description, padded with boilerplate to 750 and capped at 2000."""
    description = prop.property_description or prop.property_title or ""
    if len(description) < DESCRIPTION_MIN_LENGTH:
        filler = _description_filler(prop, purpose)
        while len(description) < DESCRIPTION_MIN_LENGTH:
            description += filler
    return description[:DESCRIPTION_MAX_LENGTH]


def _entity_ref(value: str | int | None) -> EntityRef | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text.isdigit():
        return None
    return EntityRef(id=int(text))


# ── Outbound Mapping ───────────────────────────────────────────────────────


def to_listing_payload(
    prop: PropertyRead,
    *,
    license_number: str = "",
    agent_profile_id: str | int | None = None,
    location_id: int | None = None,
) -> ListingPayload:
    """Build the portal listing payload for a catalog property.

    Missing optional fields are defaulted rather than rejected, so the result
    always satisfies the portal's required-field and length rules.

    Args:
        prop: Catalog property.
        license_number: Company license (ORN) for the compliance block.
        agent_profile_id: Portal public profile id of the assigned agent.
        location_id: Resolved portal location id.

    Returns:
        Validated ListingPayload.
    """
    purpose = map_purpose(prop.purpose)
    price_type = map_rental_period(prop.rental_period) if purpose == "rent" else "sale"
    listing_type = map_property_type(prop.property_type)
    land = is_land_type(prop.property_type) or is_land_type(listing_type)
    emirate = map_emirate(prop.emirate)

    images = [url for url in [prop.cover_photo, *prop.media_images] if url]
    agent_ref = _entity_ref(agent_profile_id)

    if land:
        amenities: list[str] | None = []
    elif prop.amenities:
        amenities = filter_amenities(prop.amenities)
    else:
        amenities = None

    project_status = None
    if purpose == "sale":
        project_status = normalize_project_status(prop.project_status)

    return ListingPayload(
        category=(prop.category or "residential").lower(),
        type=listing_type,
        furnishing_type=map_furnishing(prop.furnishing_type),
        reference=prop.reference or prop.id,
        title=LocalizedText(en=build_title(prop)),
        description=LocalizedText(en=build_description(prop, purpose)),
        size=prop.area or 0,
        price=ListingPrice(type=price_type, amounts={price_type: prop.price or 0}),
        uae_emirate=emirate,
        compliance=ListingCompliance(
            listing_advertisement_number=prop.permit_number or "",
            type="adrec" if emirate == "abu_dhabi" else "rera",
            issuing_client_license_number=license_number,
            user_confirmed_data_is_correct=True,
        ),
        location=EntityRef(id=location_id) if location_id else None,
        created_by=agent_ref,
        assigned_to=agent_ref,
        bedrooms=None if land else (str(prop.bedrooms) if prop.bedrooms else "studio"),
        bathrooms=None if land else (str(prop.bathrooms) if prop.bathrooms else "none"),
        media=(
            ListingMedia(images=[ListingImage(original=ImageRef(url=u)) for u in images])
            if images
            else None
        ),
        amenities=amenities,
        project_status=project_status,
        unit_number=prop.unit_number or None,
        floor_number=prop.floor_number or None,
        parking_slots=prop.parking_spaces,
        available_from=prop.available_from or None,
        plot_size=prop.plot_area,
        developer=prop.developer or None,
        finishing_type=prop.finishing_type.lower() if prop.finishing_type else None,
    )


def merge_listing(
    existing: dict[str, Any] | None, listing_data: dict[str, Any]
) -> dict[str, Any]:
    """Merge local listing data over a fetched listing for a full-replace update.

    Local values win for every key they set. Keys only present on the fetched
    listing are kept, except server-managed ones.

    Args:
        existing: Fetched listing in API shape, or None when the fetch failed.
        listing_data: Locally built payload in API shape.

    Returns:
        The body to send to ``PUT /listings/{id}``.
    """
    if not existing:
        return dict(listing_data)
    merged = {k: v for k, v in existing.items() if k not in READ_ONLY_LISTING_KEYS}
    merged.update(listing_data)
    for key in LOCAL_PRECEDENCE_KEYS:
        if listing_data.get(key) is None and existing.get(key) is not None:
            merged[key] = existing[key]
    return merged


# ── Inbound Mapping ────────────────────────────────────────────────────────

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")


def sanitize_text(value: Any) -> str | None:
    """Strip NUL and other control characters (tab/newline/CR are kept)."""
    if value is None:
        return None
    if isinstance(value, LocalizedText):
        value = value.en
    elif isinstance(value, dict):
        value = value.get("en") or ""
    return _CONTROL_CHARS.sub("", str(value))


def _parse_count(value: str | int | None) -> int | None:
    """Parse a bedroom/bathroom count; "studio"/"none" are 0."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    match = re.match(r"\s*(\d+)", value)
    return int(match.group(1)) if match else 0


def extract_price(price: dict[str, Any] | None) -> tuple[float | None, str | None]:
    """Pick the amount matching the price type.

    Returns:
        Tuple of (amount, price type). Rent prices fall back to the yearly
        amount and then ``value``; anything else to sale, yearly, value.
    """
    if not price:
        return None, None
    price_type = (price.get("type") or "").lower() or None
    amounts = price.get("amounts") or {}
    amount = None
    if price_type and price_type in amounts:
        amount = amounts[price_type]
    elif price_type == "rent":
        amount = amounts.get("yearly") or price.get("value")
    else:
        amount = amounts.get("sale") or amounts.get("yearly") or price.get("value")
    return (float(amount) if amount is not None else None), price_type


def extract_image_urls(listing: PortalListing) -> list[str]:
    """Collect image URLs from ``media.images`` or the legacy ``photos`` field."""
    urls: list[str] = []
    images = (listing.media or {}).get("images")
    if isinstance(images, list) and images:
        for image in images:
            url: Any = image
            if isinstance(image, dict):
                url = (
                    (image.get("original") or {}).get("url")
                    or (image.get("watermarked") or {}).get("url")
                    or image.get("url")
                )
            if isinstance(url, str) and url:
                urls.append(url)
        return urls

    photos = listing.photos
    if isinstance(photos, list):
        return [p for p in photos if isinstance(p, str) and p]
    if isinstance(photos, dict):
        variants = photos.get("large") or photos.get("medium") or photos.get("small") or []
        if isinstance(variants, list):
            for photo in variants:
                url = (photo.get("default") or photo.get("url")) if isinstance(photo, dict) else photo
                if isinstance(url, str) and url:
                    urls.append(url)
    return urls


def is_listing_published(listing: PortalListing) -> bool:
    portal_state = (listing.portals or {}).get("propertyfinder") or {}
    if portal_state.get("isLive") is True:
        return True
    state = listing.state or {}
    if state.get("stage") == "live" or state.get("type") == "live":
        return True
    return (listing.status or "").lower() in {"published", "live", "listed"}


def infer_project_status(
    listing: PortalListing, is_rental: bool
) -> tuple[str | None, str | None]:
    """Derive (project_status, completion_date) from offering type and status flags."""
    if is_rental:
        return None, None
    raw = (listing.project_status or "").strip().lower().replace("-", "_")
    off_plan = raw.startswith("off_plan")
    primary = listing.offering_type == "primary-sale" or raw.endswith("_primary")
    status = ("off_plan" if off_plan else "completed") + ("_primary" if primary else "")
    return status, (listing.completion_date if off_plan else None)


def _quality_value(value: Any) -> float | None:
    if isinstance(value, dict):
        value = value.get("value")
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _amenity_names(amenities: list[Any] | None) -> list[str]:
    names: list[str] = []
    for item in amenities or []:
        name = (item.get("slug") or item.get("name")) if isinstance(item, dict) else item
        if isinstance(name, str) and name:
            names.append(name)
    return names


def from_portal_listing(
    listing: PortalListing,
    *,
    agent_by_profile: dict[str, str] | None = None,
    agent_by_user: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Convert a portal listing into catalog column values.

    Args:
        listing: Parsed portal listing.
        agent_by_profile: Portal public profile id -> agent id.
        agent_by_user: Portal user id -> agent id.

    Returns:
        Dict of PropertyModel column values (without location path).
    """
    amount, price_type = extract_price(listing.price)
    is_rental = price_type in RENTAL_PRICE_TYPES
    project_status, completion_date = infer_project_status(listing, is_rental)
    images = extract_image_urls(listing)

    agent_id = None
    assigned_id = (listing.assigned_to or {}).get("id")
    if assigned_id is not None:
        key = str(assigned_id)
        agent_id = (agent_by_profile or {}).get(key) or (agent_by_user or {}).get(key)

    location_id = (listing.location or {}).get("id")
    listing_type = listing.type or None

    return {
        "reference": sanitize_text(listing.reference) or listing.id,
        "property_title": sanitize_text(listing.title),
        "property_description": sanitize_text(listing.description),
        "category": listing.category,
        "purpose": "rent" if is_rental else "sale",
        "rental_period": price_type if is_rental and price_type != "rent" else None,
        "property_type": REVERSE_PROPERTY_TYPE_MAP.get(listing_type, listing_type),
        "furnishing_type": listing.furnishing_type,
        "finishing_type": listing.finishing_type,
        "bedrooms": _parse_count(listing.bedrooms),
        "bathrooms": _parse_count(listing.bathrooms),
        "area": listing.size,
        "plot_area": listing.plot_size,
        "price": amount,
        "emirate": REVERSE_EMIRATE_MAP.get(listing.uae_emirate or "", listing.uae_emirate),
        "amenities": [sanitize_text(a) for a in _amenity_names(listing.amenities)],
        "cover_photo": images[0] if images else None,
        "media_images": images[1:],
        "permit_number": (listing.compliance or {}).get("listingAdvertisementNumber"),
        "project_status": project_status,
        "completion_date": completion_date,
        "unit_number": sanitize_text(listing.unit_number),
        "floor_number": sanitize_text(listing.floor_number),
        "developer": sanitize_text(listing.developer),
        "assigned_agent_id": agent_id,
        "is_active": True,
        "external_listing_id": listing.id,
        "external_location_id": int(location_id) if location_id is not None else None,
        "external_published": is_listing_published(listing),
        "external_verification_status": listing.verification_status,
        "external_quality_score": _quality_value(listing.quality_score),
    }


# ── Agent Mapping ──────────────────────────────────────────────────────────

LANGUAGE_KEYWORDS = (
    "English", "Arabic", "French", "Spanish", "Russian", "Hindi", "Urdu",
    "German", "Italian", "Chinese", "Portuguese", "Dutch", "Japanese", "Korean",
)


def agent_from_portal_user(user: dict[str, Any]) -> AgentUpsert | None:
    """Convert a portal user into agent fields, None when it has no email."""
    email = user.get("email")
    if not email:
        return None
    profile = user.get("publicProfile") or {}
    variants = (profile.get("imageVariants") or {}).get("large") or {}
    bio = (profile.get("bio") or {}).get("primary") or ""
    position = (profile.get("position") or {}).get("primary") or (user.get("role") or {}).get("name")
    name = " ".join(p for p in (user.get("firstName"), user.get("lastName")) if p) or email

    return AgentUpsert(
        name=sanitize_text(name) or email,
        email=email,
        phone=user.get("mobile") or profile.get("phone") or None,
        position=position or "Agent",
        photo_url=variants.get("default") or variants.get("jpg") or None,
        about=sanitize_text(bio) or None,
        languages=[lang for lang in LANGUAGE_KEYWORDS if lang.lower() in bio.lower()],
        is_active=user.get("status") == "active",
        external_user_id=str(user["id"]) if user.get("id") is not None else None,
        external_public_profile_id=str(profile["id"]) if profile.get("id") is not None else None,
    )
