import json

import pytest

from track_view_functions import (
    InvalidArgument,
    build_top_viewed,
    build_view_key,
    normalize_table,
    parse_view_request,
    safe_int,
    sanitize_content_id,
    sanitize_content_type,
    split_view_key,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("movie", "movie"),
        ("Movie!", "movie"),
        (" T-V ", "tv"),
        ("m0v1e", "mve"),
        (None, ""),
        (42, ""),
        (["movie"], ""),
        ({"type": "tv"}, ""),
    ],
)
def test_sanitize_content_type(raw, expected):
    assert sanitize_content_type(raw) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("123", "123"),
        ("tt123", "123"),
        ("12-34", "1234"),
        (550, "550"),
        ("abc", ""),
        (None, ""),
        (True, ""),
    ],
)
def test_sanitize_content_id(raw, expected):
    assert sanitize_content_id(raw) == expected


def test_parse_view_request_accepts_noisy_input():
    assert parse_view_request("Movie!", "tt123") == ("movie", "123")
    assert parse_view_request("TV", 1399) == ("tv", "1399")


@pytest.mark.parametrize(
    "raw_type, raw_id",
    [
        ("xx", "1"),
        ("", "1"),
        (None, "1"),
        ("movies", "1"),
        ("movie", "abc"),
        ("movie", ""),
        ("tv", None),
    ],
)
def test_parse_view_request_rejects_invalid_pairs(raw_type, raw_id):
    with pytest.raises(InvalidArgument):
        parse_view_request(raw_type, raw_id)


def test_view_key_layout():
    assert build_view_key("movie", "550") == "movie_550"
    assert split_view_key("movie_550") == ("movie", "550")
    assert split_view_key("tv_1") == ("tv", "1")
    assert split_view_key("movie_") is None
    assert split_view_key("movie_x1") is None
    assert split_view_key("person_3") is None
    assert split_view_key(None) is None


def test_safe_int():
    assert safe_int("7") == 7
    assert safe_int(3.9) == 3
    assert safe_int("nope", None) is None
    assert safe_int(None, 5) == 5
    assert safe_int(True, 0) == 0
    assert safe_int(float("inf"), None) is None
    assert safe_int("-inf", None) is None
    assert safe_int(float("nan"), None) is None


def test_normalize_table_recovers_from_non_objects():
    assert normalize_table([]) == {}
    assert normalize_table("views") == {}
    assert normalize_table(None) == {}
    assert normalize_table({"movie_1": "4", "tv_2": 1, "movie_3": "x", "tv_4": -2}) == {
        "movie_1": 4,
        "tv_2": 1,
        "tv_4": 0,
    }


def test_normalize_table_drops_non_finite_counts():
    decoded = json.loads('{"movie_1": Infinity, "movie_2": 1e400, "tv_3": -Infinity, "tv_4": NaN, "tv_5": 2}')
    assert normalize_table(decoded) == {"tv_5": 2}


def test_top_viewed_orders_by_views():
    table = {"movie_1": 50, "movie_2": 10, "tv_5": 3}
    assert build_top_viewed(table) == {"movies": ["1", "2"], "tv": ["5"]}


def test_top_viewed_keeps_ten_per_type():
    table = {f"movie_{i}": i for i in range(1, 16)}
    table.update({f"tv_{i}": 100 - i for i in range(1, 13)})

    result = build_top_viewed(table)

    assert result["movies"] == [str(i) for i in range(15, 5, -1)]
    assert result["tv"] == [str(i) for i in range(1, 11)]


def test_top_viewed_breaks_ties_by_id():
    table = {"movie_20": 5, "movie_3": 5, "movie_100": 5, "movie_7": 9}
    assert build_top_viewed(table)["movies"] == ["7", "3", "20", "100"]


def test_top_viewed_ignores_unknown_prefixes_and_empty_table():
    assert build_top_viewed({"person_1": 99, "tv_2": 1}) == {"movies": [], "tv": ["2"]}
    assert build_top_viewed({}) == {"movies": [], "tv": []}


def test_top_viewed_skips_malformed_keys():
    table = {"movie_abc": 99, "movie_": 98, "tv_1x": 97, "movie_4": 1, "tv_2": 1}
    assert build_top_viewed(table) == {"movies": ["4"], "tv": ["2"]}


def test_top_viewed_custom_limit():
    table = {"movie_1": 3, "movie_2": 2, "movie_3": 1}
    assert build_top_viewed(table, limit=2)["movies"] == ["1", "2"]
