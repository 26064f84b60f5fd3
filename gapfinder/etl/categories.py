"""Category vocabulary: business type -> provider-native tag values.

The table is data, not branching: supporting a new category or provider means
adding a row or a column.
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

from gapfinder.models import BoundingBox

# key -> {"aliases": free-text spellings, "osm": "key=value" tags, "google": Places types}
CATEGORY_TABLE: Dict[str, Dict[str, Tuple[str, ...]]] = {
    "cafe": {"aliases": ("coffee shop", "coffee", "coffeehouse", "café"), "osm": ("amenity=cafe",), "google": ("cafe",)},
    "restaurant": {"aliases": ("diner", "eatery", "bistro"), "osm": ("amenity=restaurant",), "google": ("restaurant",)},
    "fast food": {"aliases": ("takeaway", "burger", "pizza"), "osm": ("amenity=fast_food",), "google": ("meal_takeaway",)},
    "bar": {"aliases": ("pub", "tavern"), "osm": ("amenity=bar", "amenity=pub"), "google": ("bar",)},
    "bakery": {"aliases": ("baker",), "osm": ("shop=bakery",), "google": ("bakery",)},
    "hair salon": {"aliases": ("hairdresser", "barber", "barbershop"), "osm": ("shop=hairdresser",), "google": ("hair_care",)},
    "beauty salon": {"aliases": ("nail salon", "spa", "beauty"), "osm": ("shop=beauty",), "google": ("beauty_salon",)},
    "gym": {"aliases": ("fitness center", "fitness centre", "fitness"), "osm": ("leisure=fitness_centre",), "google": ("gym",)},
    "dentist": {"aliases": ("dental clinic",), "osm": ("amenity=dentist", "healthcare=dentist"), "google": ("dentist",)},
    "pharmacy": {"aliases": ("chemist", "drugstore"), "osm": ("amenity=pharmacy",), "google": ("pharmacy",)},
    "plumber": {"aliases": ("plumbing",), "osm": ("craft=plumber",), "google": ("plumber",)},
    "electrician": {"aliases": ("electrical contractor",), "osm": ("craft=electrician",), "google": ("electrician",)},
    "car repair": {"aliases": ("mechanic", "auto repair", "garage"), "osm": ("shop=car_repair",), "google": ("car_repair",)},
    "florist": {"aliases": ("flower shop",), "osm": ("shop=florist",), "google": ("florist",)},
    "hotel": {"aliases": ("motel", "inn"), "osm": ("tourism=hotel", "tourism=motel"), "google": ("lodging",)},
    "laundry": {"aliases": ("laundromat", "dry cleaner"), "osm": ("shop=laundry", "shop=dry_cleaning"), "google": ("laundry",)},
    "bookstore": {"aliases": ("book shop", "bookshop"), "osm": ("shop=books",), "google": ("book_store",)},
    "pet store": {"aliases": ("pet shop",), "osm": ("shop=pet",), "google": ("pet_store",)},
    "veterinarian": {"aliases": ("vet", "animal hospital"), "osm": ("amenity=veterinary",), "google": ("veterinary_care",)},
    "grocery": {"aliases": ("grocery store", "supermarket", "convenience store"), "osm": ("shop=supermarket", "shop=convenience"), "google": ("supermarket",)},
}

# Tag keys searched by name when a business type has no mapping.
WILDCARD_TAG_KEYS = ("amenity", "shop", "craft", "office", "leisure", "tourism", "healthcare")

_ALIASES: Dict[str, str] = {}
for _key, _row in CATEGORY_TABLE.items():
    _ALIASES[_key] = _key
    for _alias in _row["aliases"]:
        _ALIASES[_alias] = _key


def normalize_business_type(text: str) -> str:
    """Lowercase, collapse whitespace and singularize the last word."""
    cleaned = re.sub(r"\s+", " ", (text or "").strip().lower())
    if not cleaned:
        return ""
    words = cleaned.split(" ")
    last = words[-1]
    if last.endswith("ies") and len(last) > 4:
        last = last[:-3] + "y"
    elif last.endswith(("shes", "ches")):
        last = last[:-2]
    elif last.endswith("s") and not last.endswith("ss") and len(last) > 3:
        last = last[:-1]
    words[-1] = last
    return " ".join(words)


def lookup_category(business_type: str) -> Optional[str]:
    normalized = normalize_business_type(business_type)
    if normalized in _ALIASES:
        return _ALIASES[normalized]
    raw = re.sub(r"\s+", " ", (business_type or "").strip().lower())
    return _ALIASES.get(raw)


def osm_tags_for(business_types: Iterable[str]) -> Tuple[List[Tuple[str, str]], List[str]]:
    """Split business types into mapped OSM (key, value) tags and unmapped keywords."""
    tags: List[Tuple[str, str]] = []
    unmapped: List[str] = []
    for business_type in business_types:
        category = lookup_category(business_type)
        if category is None:
            keyword = normalize_business_type(business_type)
            if keyword and keyword not in unmapped:
                unmapped.append(keyword)
            continue
        for tag in CATEGORY_TABLE[category]["osm"]:
            key, value = tag.split("=", 1)
            if (key, value) not in tags:
                tags.append((key, value))
    return tags, unmapped


def google_type_for(business_type: str) -> Optional[str]:
    category = lookup_category(business_type)
    if category is None:
        return None
    google_types = CATEGORY_TABLE[category].get("google") or ()
    return google_types[0] if google_types else None


def _quote_regex(keyword: str) -> str:
    # Overpass string literals reject "\ ", so spaces stay unescaped.
    return re.escape(keyword).replace("\\ ", " ").replace('"', '\\"')


def build_overpass_query(bounds: BoundingBox, business_types: Iterable[str], timeout_s: int = 25) -> str:
    """Overpass QL for every mapped tag plus a name match across wildcard keys."""
    bbox = f"{bounds.south},{bounds.west},{bounds.north},{bounds.east}"
    tags, unmapped = osm_tags_for(business_types)
    statements: List[str] = []
    for key, value in tags:
        statements.append(f'  nwr["{key}"="{value}"]({bbox});')
    for keyword in unmapped:
        pattern = _quote_regex(keyword)
        for key in WILDCARD_TAG_KEYS:
            statements.append(f'  nwr["{key}"]["name"~"{pattern}",i]({bbox});')
    body = "\n".join(statements)
    return f"[out:json][timeout:{timeout_s}];\n(\n{body}\n);\nout center tags;"
