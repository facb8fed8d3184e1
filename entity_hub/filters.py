"""Filter tokens for the list pages.

A list filter lives in three shapes:

* the flat query string carried in the URL (``ids=3,7&q=bolt&status=inactive``),
* an ordered list of ``FilterToken`` values, the form the filter box edits,
* a ``ListFilters`` object handed to storage when listing rows.

Entities differ only in which optional keys they understand, which is
described by an ``EntityDescriptor``. Nothing here raises on bad input;
fragments that cannot be read are dropped.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, NamedTuple

from .errors import InvalidFilterFragment

logger = logging.getLogger(__name__)

TRUTHY_VALUES = {"true", "1", "yes", "y"}
FALSY_VALUES = {"false", "0", "no", "n"}
# Token keys that have their own query parameter.
QUERY_KEYS = {"id", "name", "tag", "status", "unique", "type"}


class FilterToken(NamedTuple):
    key: str
    value: str


@dataclass(frozen=True)
class EntityDescriptor:
    supports_unique_flag: bool = False
    supports_type_field: bool = False
    default_status: str = "active"
    # Extra numeric token keys mapped to ListFilters attribute names.
    numeric_keys: Mapping[str, str] = field(default_factory=dict)


@dataclass
class ListFilters:
    ids: List[int] | None = None
    name_query: str | None = None
    tag_ids: List[int] | None = None
    status: str | None = None
    unique: bool | None = None
    type: str | None = None
    person_ids: List[int] | None = None

    def as_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in self.__dict__.items() if value is not None}


def _query_value(query: Mapping[str, Any], key: str) -> str:
    value = query.get(key)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return ""
    return str(value).strip()


def _split_list(raw: str) -> List[str]:
    seen: List[str] = []
    for part in raw.split(","):
        part = part.strip()
        if part and part not in seen:
            seen.append(part)
    return seen


def parse_pair(segment: str) -> FilterToken:
    """Split ``key:value`` on the first colon.

    Raises InvalidFilterFragment when there is no colon or either side is empty.
    """
    key, sep, value = segment.partition(":")
    if not sep or not key or not value:
        raise InvalidFilterFragment(segment)
    return FilterToken(key, value)


def parse_query_to_tokens(query: Mapping[str, Any], descriptor: EntityDescriptor) -> List[FilterToken]:
    tokens: List[FilterToken] = []

    for value in _split_list(_query_value(query, "ids")):
        tokens.append(FilterToken("id", value))
    name = _query_value(query, "q")
    if name:
        tokens.append(FilterToken("name", name))
    for value in _split_list(_query_value(query, "tags")):
        tokens.append(FilterToken("tag", value))
    status = _query_value(query, "status")
    if status:
        tokens.append(FilterToken("status", status))
    if descriptor.supports_unique_flag:
        unique = _query_value(query, "unique")
        if unique:
            tokens.append(FilterToken("unique", unique))
    if descriptor.supports_type_field:
        type_value = _query_value(query, "type")
        if type_value:
            tokens.append(FilterToken("type", type_value))

    for segment in _query_value(query, "filter").split():
        try:
            tokens.append(parse_pair(segment))
        except InvalidFilterFragment:
            logger.debug("Dropping filter fragment %r", segment)

    if descriptor.default_status and not any(token.key == "status" for token in tokens):
        tokens.append(FilterToken("status", descriptor.default_status))
    return tokens


def _first(tokens: List[FilterToken], key: str) -> FilterToken | None:
    for token in tokens:
        if token.key == key:
            return token
    return None


def _unique_values(tokens: List[FilterToken], key: str) -> List[str]:
    values: List[str] = []
    for token in tokens:
        if token.key == key and token.value not in values:
            values.append(token.value)
    return values


def serialize_tokens_to_query(tokens: List[FilterToken], descriptor: EntityDescriptor) -> Dict[str, str]:
    """Flatten tokens back into query parameters.

    The default status is left out so the plain list URL stays clean; parsing
    the result injects it again. Tokens without a parameter of their own
    (``person:2``) are kept as space separated ``filter`` segments.
    """
    query: Dict[str, str] = {}
    ids = _unique_values(tokens, "id")
    if ids:
        query["ids"] = ",".join(ids)
    names = [token.value for token in tokens if token.key == "name" and token.value]
    if names:
        query["q"] = " ".join(names)
    tags = _unique_values(tokens, "tag")
    if tags:
        query["tags"] = ",".join(tags)
    status = _first(tokens, "status")
    if status and status.value != descriptor.default_status:
        query["status"] = status.value
    if descriptor.supports_unique_flag:
        unique = _first(tokens, "unique")
        if unique:
            query["unique"] = unique.value
    if descriptor.supports_type_field:
        type_token = _first(tokens, "type")
        if type_token:
            query["type"] = type_token.value
    extra: List[str] = []
    for token in tokens:
        if token.key in QUERY_KEYS or not token.key or not token.value:
            continue
        segment = f"{token.key}:{token.value}"
        # Segments are split on whitespace when read back.
        if segment.split() == [segment] and segment not in extra:
            extra.append(segment)
    if extra:
        query["filter"] = " ".join(extra)
    return query


def extract_numeric_list(tokens: List[FilterToken], key: str) -> List[int] | None:
    numbers: List[int] = []
    for token in tokens:
        if token.key != key:
            continue
        text = token.value.strip()
        if not text.isdecimal():
            continue
        number = int(text)
        if number > 0 and number not in numbers:
            numbers.append(number)
    return numbers or None


def extract_name_query(tokens: List[FilterToken]) -> str | None:
    parts = [token.value.strip() for token in tokens if token.key == "name"]
    parts = [part for part in parts if part]
    return " ".join(parts) if parts else None


def extract_single(tokens: List[FilterToken], key: str) -> str | None:
    token = _first(tokens, key)
    return token.value if token else None


def parse_bool_token(tokens: List[FilterToken], key: str = "unique") -> bool | None:
    token = _first(tokens, key)
    if token is None:
        return None
    value = token.value.strip().lower()
    if value in TRUTHY_VALUES:
        return True
    if value in FALSY_VALUES:
        return False
    return None


def tokens_to_filters(tokens: List[FilterToken], descriptor: EntityDescriptor) -> ListFilters:
    filters = ListFilters(
        ids=extract_numeric_list(tokens, "id"),
        name_query=extract_name_query(tokens),
        tag_ids=extract_numeric_list(tokens, "tag"),
        status=extract_single(tokens, "status"),
    )
    if descriptor.supports_unique_flag:
        filters.unique = parse_bool_token(tokens, "unique")
    if descriptor.supports_type_field:
        filters.type = extract_single(tokens, "type")
    for key, attribute in descriptor.numeric_keys.items():
        setattr(filters, attribute, extract_numeric_list(tokens, key))
    return filters


def parse_query_to_filters(query: Mapping[str, Any], descriptor: EntityDescriptor) -> ListFilters:
    return tokens_to_filters(parse_query_to_tokens(query, descriptor), descriptor)


def normalize_user_input(raw: str) -> FilterToken | None:
    """Turn one entry typed into the filter box into a token.

    ``tag:5`` becomes a tag token, ``42`` an id token, anything else a name.
    """
    text = (raw or "").strip()
    if not text:
        return None
    if ":" in text:
        try:
            return parse_pair(text)
        except InvalidFilterFragment:
            return None
    if text.isdecimal():
        return FilterToken("id", text)
    return FilterToken("name", text)
