import logging
from datetime import datetime
from typing import Mapping, get_args

from webinar_api.type_defs import is_json_object, JsonObject, JsonValue
from webinar_api.utils.datetime import coerce_datetime

logger = logging.getLogger(__name__)


class Serializable:
    def _annotations(self) -> dict[str, object]:
        annotations: dict[str, object] = {}
        for cls in reversed(type(self).mro()):
            cls_annotations = getattr(cls, "__annotations__", None)
            if isinstance(cls_annotations, dict):
                annotations.update(cls_annotations)
        return annotations

    def to_dict(self) -> JsonObject:
        result: JsonObject = {}
        for key in self.get_all_keys():
            if key.startswith("_"):
                continue
            value = getattr(self, key, None)
            if isinstance(value, Serializable):
                result[key] = value.to_dict()
            elif value is not None:
                # toml has no null; unset values are simply omitted.
                result[key] = value
        return result

    def from_dict(self, data: Mapping[str, JsonValue]) -> None:
        for key, type_hint in self._annotations().items():
            if key.startswith("_"):
                continue
            try:
                existing_attr = getattr(self, key)
            except AttributeError:
                logger.warning("%s not in %s. Skipping...", key, self.__class__.__name__)
                continue

            value = data.get(key, existing_attr)
            if isinstance(existing_attr, Serializable):
                if not is_json_object(value):
                    logger.warning(
                        "Expected table for %s in %s, got %s. Skipping...",
                        key,
                        self.__class__.__name__,
                        type(value),
                    )
                    continue
                existing_attr.from_dict(value)
            else:
                setattr(self, key, self._coerce(key, value, type_hint))

        self.validate()

    def _coerce(self, key: str, value: object, type_hint: object) -> object:
        if value is None:
            return None
        accepted = set(get_args(type_hint)) or {type_hint}
        try:
            if bool in accepted and isinstance(value, str):
                return value.strip().lower() in {"1", "true", "yes", "on"}
            if int in accepted and not isinstance(value, bool) and isinstance(value, (str, float)):
                return int(value)
            if float in accepted and not isinstance(value, bool) and isinstance(value, (str, int)):
                return float(value)
            if datetime in accepted and not isinstance(value, datetime):
                return coerce_datetime(value)
        except ValueError:
            logger.warning(
                "Invalid value %r for %s in %s; keeping default.",
                value,
                key,
                self.__class__.__name__,
            )
            return getattr(type(self), key, None)
        return value

    def validate(self) -> None:
        for key in self.missing_keys():
            logger.warning(
                "Configuration value '%s' is missing or None in %s",
                key,
                self.__class__.__name__,
            )

    def missing_keys(self) -> list[str]:
        return sorted(
            key
            for key, type_hint in self._annotations().items()
            if not key.startswith("_")
            and type(None) not in get_args(type_hint)
            and getattr(self, key, None) is None
        )

    def get_all_keys(self) -> set[str]:
        instance_keys = set(self.__dict__.keys())
        annotation_keys = set(self._annotations().keys())
        return instance_keys | annotation_keys
