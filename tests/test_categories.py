import pytest

from gapfinder.etl import categories
from gapfinder.models import BoundingBox

BOUNDS = BoundingBox(west=-122.7, east=-122.6, north=45.6, south=45.5)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Cafes", "cafe"),
        ("  coffee   shops ", "coffee shop"),
        ("pharmacies", "pharmacy"),
        ("barbershop", "barbershop"),
        ("dry cleaners", "dry cleaner"),
        ("churches", "church"),
        ("glass", "glass"),
        ("bus", "bus"),
        ("", ""),
    ],
)
def test_normalize_business_type(raw, expected):
    assert categories.normalize_business_type(raw) == expected


def test_lookup_category_resolves_aliases():
    assert categories.lookup_category("coffee shops") == "cafe"
    assert categories.lookup_category("Hairdressers") == "hair salon"
    assert categories.lookup_category("axe throwing") is None


def test_osm_tags_split_mapped_and_unmapped():
    tags, unmapped = categories.osm_tags_for(["cafes", "coffee", "pubs", "axe throwing venues"])

    assert tags == [("amenity", "cafe"), ("amenity", "bar"), ("amenity", "pub")]
    assert unmapped == ["axe throwing venue"]


def test_google_type_for():
    assert categories.google_type_for("hotels") == "lodging"
    assert categories.google_type_for("axe throwing") is None


def test_build_overpass_query_uses_south_west_north_east_bbox():
    query = categories.build_overpass_query(BOUNDS, ["cafes"], timeout_s=30)

    assert query.startswith("[out:json][timeout:30];")
    assert 'nwr["amenity"="cafe"](45.5,-122.7,45.6,-122.6);' in query
    assert query.rstrip().endswith("out center tags;")


def test_build_overpass_query_name_matches_unmapped_types():
    query = categories.build_overpass_query(BOUNDS, ["axe throwing"])

    for key in categories.WILDCARD_TAG_KEYS:
        assert f'nwr["{key}"]["name"~"axe throwing",i]' in query
