from __future__ import annotations

from typing import TypeAlias, TypeGuard

JsonScalar: TypeAlias = str | int | float | bool | None
JsonValue: TypeAlias = JsonScalar | dict[str, "JsonValue"] | list["JsonValue"]
JsonObject: TypeAlias = dict[str, JsonValue]
JsonArray: TypeAlias = list[JsonValue]

QueryParamValue: TypeAlias = str | int | float | bool | None
QueryParams: TypeAlias = dict[str, QueryParamValue]


def is_json_scalar(value: object) -> TypeGuard[JsonScalar]:
    return value is None or isinstance(value, (str, int, float, bool))


def is_json_value(value: object) -> TypeGuard[JsonValue]:
    if is_json_scalar(value):
        return True
    if isinstance(value, list):
        return all(is_json_value(item) for item in value)
    if isinstance(value, dict):
        return all(
            isinstance(key, str) and is_json_value(item) for key, item in value.items()
        )
    return False


def is_json_object(value: object) -> TypeGuard[JsonObject]:
    return isinstance(value, dict) and all(
        isinstance(key, str) and is_json_value(item) for key, item in value.items()
    )


def json_objects(value: object) -> list[JsonObject]:
    """Keep only the dict rows of an upstream list payload."""
    if not isinstance(value, list):
        return []
    return [item for item in value if is_json_object(item)]


def normalize_external_id(raw_identifier: object) -> str | None:
    if raw_identifier is None or isinstance(raw_identifier, bool):
        return None
    if isinstance(raw_identifier, int):
        return None if raw_identifier == 0 else str(raw_identifier)
    if isinstance(raw_identifier, float) and raw_identifier.is_integer():
        return None if raw_identifier == 0 else str(int(raw_identifier))
    if isinstance(raw_identifier, str):
        stripped_value = raw_identifier.strip()
        if stripped_value in {"", "0", "undefined", "null"}:
            return None
        return stripped_value
    return None


def normalize_count(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
