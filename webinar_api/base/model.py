import re
from abc import ABC
from dataclasses import dataclass, field, fields
from datetime import datetime
from types import UnionType
from typing import Any, ClassVar, Mapping, Self, Union, get_args, get_origin

from webinar_api.type_defs import normalize_external_id
from webinar_api.utils import coerce_datetime, ensure_utc


class RecordParseError(ValueError):
    def __init__(self, record_type: str, message: str, payload: Mapping[str, object]) -> None:
        self.record_type = record_type
        self.payload = dict(payload)
        super().__init__(f"{record_type}: {message}")


@dataclass
class BaseRecord(ABC):
    """
    Typed intermediate form of one upstream payload.

    ``from_dict`` reads each declared field from the keys listed for it in
    ``FIELD_SOURCES`` (primary key first) and coerces values to the declared
    type. Every secondary key or default that had to be used is recorded in
    ``fallbacks`` so callers can report how much of a payload was guessed.
    """

    external_id: str = ""
    fallbacks: list[str] = field(default_factory=list, init=False, repr=False, compare=False)

    FIELD_SOURCES: ClassVar[dict[str, tuple[str, ...]]] = {}
    PERSISTED_EXCLUDE: ClassVar[frozenset[str]] = frozenset({"fallbacks"})

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], **context: Any) -> Self:
        cleaned_data = {
            cls.clean_key(key): value
            for key, value in data.items()
            if isinstance(key, str) and value is not None
        }
        values: dict[str, Any] = {}
        fallbacks: list[str] = []

        for current_field in fields(cls):
            if not current_field.init:
                continue
            name = current_field.name
            raw_value = None
            for position, source in enumerate(cls.FIELD_SOURCES.get(name, (name,))):
                if cleaned_data.get(source) is not None:
                    raw_value = cleaned_data[source]
                    if position > 0:
                        fallbacks.append(f"{name}<-{source}")
                    break
            if raw_value is None:
                continue

            value = cls._coerce_value(name, current_field.type, raw_value)
            if value is None:
                fallbacks.append(f"{name}:invalid")
                continue
            values[name] = value

        instance = cls(**values)
        instance.fallbacks = fallbacks
        instance.finalize(data, **context)
        return instance

    def finalize(self, data: Mapping[str, Any], **context: Any) -> None:
        if not self.external_id:
            raise RecordParseError(type(self).__name__, "missing external id", data)

    def note_fallback(self, description: str) -> None:
        self.fallbacks.append(description)

    def to_fields(self) -> dict[str, Any]:
        """Persistable field values, without parse bookkeeping."""
        return {
            current_field.name: getattr(self, current_field.name)
            for current_field in fields(self)
            if current_field.name not in self.PERSISTED_EXCLUDE
        }

    @staticmethod
    def clean_key(key: str) -> str:
        cleaned_key = re.sub(r"[ /-]", "_", key.strip())
        return cleaned_key.lower()

    @classmethod
    def _coerce_value(cls, name: str, field_type: object, value: object) -> object:
        base_type = cls._resolve_base_type(field_type)
        if name == "external_id" or base_type is str:
            if name == "external_id" or name.endswith("_id"):
                return normalize_external_id(value)
            if isinstance(value, (dict, list)):
                return None
            text = str(value).strip()
            return text or None
        if base_type is datetime:
            parsed = coerce_datetime(value)
            return ensure_utc(parsed) if parsed is not None else None
        if base_type is bool:
            if isinstance(value, bool):
                return value
            if isinstance(value, (int, float)):
                return bool(value)
            if isinstance(value, str):
                return value.strip().lower() in {"1", "true", "yes", "on"}
            return None
        if base_type is int:
            return cls._coerce_int(value)
        if base_type is dict:
            return value if isinstance(value, dict) else None
        if base_type is list:
            return value if isinstance(value, list) else None
        return value

    @staticmethod
    def _coerce_int(value: object) -> int | None:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            return int(value)
        if isinstance(value, str):
            stripped_value = value.strip()
            if stripped_value.lstrip("-").isdigit():
                return int(stripped_value)
            try:
                return int(float(stripped_value))
            except ValueError:
                return None
        return None

    @staticmethod
    def _resolve_base_type(field_type: object) -> object:
        origin = get_origin(field_type)
        if origin in {Union, UnionType}:
            for arg in get_args(field_type):
                if arg is not type(None):
                    return get_origin(arg) or arg
            return None
        return origin or field_type
