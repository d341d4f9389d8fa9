from app.utils import (
    format_comic_string,
    parse_collections,
    parse_comic_string,
    search_variants,
    slugify,
)


def test_slugify_basic():
    assert slugify("Batman: The Animated Series!") == "batman-the-animated-series"


def test_parse_collections_from_json_string():
    assert parse_collections('["Marvel", "Marvel ", "", "MCU"]') == ["Marvel", "MCU"]


def test_parse_collections_rejects_garbage():
    assert parse_collections("not json") == []
    assert parse_collections(None) == []


def test_search_variants_never_append_suffix():
    assert search_variants("Star Wars") == ["Star Wars"]
    assert search_variants("Star Wars Collection") == ["Star Wars Collection", "Star Wars"]


def test_parse_comic_string():
    assert parse_comic_string("Saga (2012) #1") == ("Saga", 2012, "1")
    assert parse_comic_string("The Amazing Spider-Man (1963)  #121") == (
        "The Amazing Spider-Man",
        1963,
        "121",
    )
    assert parse_comic_string("Saga #1") is None


def test_format_comic_string():
    assert format_comic_string("Saga", 2012, "1") == "Saga (2012) #1"
    assert format_comic_string("Saga", None, "1") == "Saga #1"
