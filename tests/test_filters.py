"""Tests for the filter token engine."""

from __future__ import annotations

import logging

import pytest

from entity_hub.entities import ITEMS_DESCRIPTOR, PERSONS_DESCRIPTOR, PROJECTS_DESCRIPTOR
from entity_hub.errors import InvalidFilterFragment
from entity_hub.filters import (
    EntityDescriptor,
    FilterToken,
    ListFilters,
    extract_numeric_list,
    normalize_user_input,
    parse_bool_token,
    parse_pair,
    parse_query_to_filters,
    parse_query_to_tokens,
    serialize_tokens_to_query,
    tokens_to_filters,
)


def test_ids_unique_and_default_status_from_query() -> None:
    tokens = parse_query_to_tokens({"ids": "3,3,7", "unique": "true"}, ITEMS_DESCRIPTOR)

    assert tokens == [
        FilterToken("id", "3"),
        FilterToken("id", "7"),
        FilterToken("unique", "true"),
        FilterToken("status", "active"),
    ]
    filters = tokens_to_filters(tokens, ITEMS_DESCRIPTOR)
    assert filters.ids == [3, 7]
    assert filters.unique is True
    # The injected default is carried through to the filters object.
    assert filters.status == "active"


def test_query_round_trip_restores_default_status() -> None:
    tokens = [
        FilterToken("id", "4"),
        FilterToken("tag", "9"),
        FilterToken("name", "bolt"),
        FilterToken("status", "active"),
        FilterToken("unique", "false"),
    ]

    query = serialize_tokens_to_query(tokens, ITEMS_DESCRIPTOR)

    assert "status" not in query
    assert sorted(parse_query_to_tokens(query, ITEMS_DESCRIPTOR)) == sorted(tokens)


def test_non_default_status_survives_round_trip() -> None:
    tokens = [FilterToken("status", "archived")]

    query = serialize_tokens_to_query(tokens, PERSONS_DESCRIPTOR)

    assert query == {"status": "archived"}
    assert parse_query_to_tokens(query, PERSONS_DESCRIPTOR) == tokens


def test_parse_order_and_filter_segments(caplog: pytest.LogCaptureFixture) -> None:
    query = {
        "filter": "tag:5 bogus :x y: person:2",
        "status": "inactive",
        "q": "  roof  ",
        "tags": "1, 2",
        "ids": "8",
    }

    with caplog.at_level(logging.DEBUG, logger="entity_hub.filters"):
        tokens = parse_query_to_tokens(query, PROJECTS_DESCRIPTOR)

    assert tokens == [
        FilterToken("id", "8"),
        FilterToken("name", "roof"),
        FilterToken("tag", "1"),
        FilterToken("tag", "2"),
        FilterToken("status", "inactive"),
        FilterToken("tag", "5"),
        FilterToken("person", "2"),
    ]
    assert "bogus" in caplog.text


def test_unsupported_keys_are_ignored_per_entity() -> None:
    query = {"unique": "true", "type": "legal"}

    assert parse_query_to_tokens(query, ITEMS_DESCRIPTOR) == [
        FilterToken("unique", "true"),
        FilterToken("status", "active"),
    ]
    assert parse_query_to_tokens(query, PERSONS_DESCRIPTOR) == [
        FilterToken("type", "legal"),
        FilterToken("status", "active"),
    ]
    assert serialize_tokens_to_query([FilterToken("unique", "true")], PERSONS_DESCRIPTOR) == {}


def test_no_default_status_means_nothing_injected() -> None:
    descriptor = EntityDescriptor(default_status="")

    assert parse_query_to_tokens({}, descriptor) == []


def test_query_values_may_be_lists() -> None:
    tokens = parse_query_to_tokens({"ids": ["5,6", "9"], "q": []}, ITEMS_DESCRIPTOR)

    assert tokens == [FilterToken("id", "5"), FilterToken("id", "6"), FilterToken("status", "active")]


def test_serialize_dedupes_and_joins_names() -> None:
    tokens = [
        FilterToken("id", "3"),
        FilterToken("id", "3"),
        FilterToken("id", "1"),
        FilterToken("name", "red"),
        FilterToken("name", "bolt"),
        FilterToken("tag", "2"),
        FilterToken("tag", "2"),
    ]

    assert serialize_tokens_to_query(tokens, ITEMS_DESCRIPTOR) == {"ids": "3,1", "q": "red bolt", "tags": "2"}


def test_numeric_list_is_idempotent_and_drops_junk() -> None:
    tokens = [
        FilterToken("id", "5"),
        FilterToken("id", "5"),
        FilterToken("id", "0"),
        FilterToken("id", "-3"),
        FilterToken("id", "abc"),
        FilterToken("id", " 12 "),
        FilterToken("tag", "7"),
    ]

    first = extract_numeric_list(tokens, "id")
    second = extract_numeric_list(tokens, "id")

    assert first == second == [5, 12]
    assert extract_numeric_list([FilterToken("id", "x")], "id") is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("TRUE", True), ("y", True), ("1", True), ("No", False), ("0", False), ("maybe", None)],
)
def test_parse_bool_token(raw: str, expected: bool | None) -> None:
    assert parse_bool_token([FilterToken("unique", raw)]) is expected


def test_tokens_to_filters_keeps_first_single_values() -> None:
    tokens = [
        FilterToken("type", "legal"),
        FilterToken("type", "natural"),
        FilterToken("status", "whatever"),
        FilterToken("name", "acme"),
    ]

    filters = tokens_to_filters(tokens, PERSONS_DESCRIPTOR)

    assert filters == ListFilters(name_query="acme", status="whatever", type="legal")


def test_project_person_tokens_become_person_ids() -> None:
    filters = parse_query_to_filters({"filter": "person:4 person:4 person:x"}, PROJECTS_DESCRIPTOR)

    assert filters.person_ids == [4]
    assert filters.as_dict() == {"person_ids": [4], "status": "active"}


def test_parse_pair_splits_on_first_colon() -> None:
    assert parse_pair("name:a:b") == FilterToken("name", "a:b")
    with pytest.raises(InvalidFilterFragment):
        parse_pair("novalue:")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("42", FilterToken("id", "42")),
        ("tag:featured", FilterToken("tag", "featured")),
        ("   ", None),
        ("", None),
        (":x", None),
        ("status:", None),
        ("  copper wire ", FilterToken("name", "copper wire")),
        ("4a", FilterToken("name", "4a")),
    ],
)
def test_normalize_user_input(raw: str, expected: FilterToken | None) -> None:
    assert normalize_user_input(raw) == expected


def test_keys_without_their_own_parameter_survive_as_filter_segments() -> None:
    tokens = parse_query_to_tokens({"filter": "person:2 person:2 person:5"}, PROJECTS_DESCRIPTOR)

    query = serialize_tokens_to_query(tokens + [FilterToken("note", "two words")], PROJECTS_DESCRIPTOR)

    assert query == {"filter": "person:2 person:5"}
    assert parse_query_to_filters(query, PROJECTS_DESCRIPTOR).person_ids == [2, 5]
