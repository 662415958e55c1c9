"""Conversion between native Python values and tagged attribute values.

Tagged values use the DynamoDB attribute-value shape: a single-key mapping from
a type tag (``S``, ``N``, ``B``, ``BOOL``, ``NULL``, ``L``, ``M``, ``SS``,
``NS``, ``BS``) to its payload. Numbers are carried as text; an integer is
written without a decimal point or exponent and a float always with one, so a
float never comes back as an int (or as a string).
"""

from __future__ import annotations

import math
import types
from collections.abc import Callable, Mapping
from dataclasses import MISSING, dataclass, fields, is_dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol, Union, cast, get_args, get_origin, get_type_hints

from boto3.dynamodb.types import Binary, TypeDeserializer, TypeSerializer

from .errors import CodecError
from .model import field_options

type TaggedValue = dict[str, Any]
type Item = dict[str, TaggedValue]

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _is_binary(value: Any) -> bool:
    return isinstance(value, (bytes, bytearray, Binary))


# Payload shape accepted for each tag the deserializer handles.
_PAYLOAD_CHECKS: dict[str, Callable[[Any], bool]] = {
    "S": lambda p: isinstance(p, str),
    "B": _is_binary,
    "BOOL": lambda p: isinstance(p, bool),
    "NULL": lambda p: p is True,
    "SS": lambda p: isinstance(p, list) and all(isinstance(v, str) for v in p),
    "BS": lambda p: isinstance(p, list) and all(_is_binary(v) for v in p),
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _number_text(value: Any) -> str:
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise CodecError(f"unsupported number: {value!r}")
        return str(Decimal(repr(value)))
    if not value.is_finite():
        raise CodecError(f"unsupported number: {value!r}")
    return str(value)


def _number_from_text(text: Any) -> int | float:
    if not isinstance(text, str) or not text:
        raise CodecError(f"N value must be a non-empty string (got {text!r})")
    try:
        if any(c in text for c in ".eE"):
            return float(text)
        return int(text)
    except ValueError as err:
        raise CodecError(f"invalid number: {text!r}") from err


def _encode_set(value: set[Any] | frozenset[Any]) -> TaggedValue:
    if not value:
        raise CodecError("empty sets cannot be encoded")
    if all(_is_number(v) for v in value):
        return {"NS": [_number_text(v) for v in value]}
    if all(isinstance(v, str) for v in value) or all(isinstance(v, (bytes, bytearray)) for v in value):
        return _serializer.serialize({bytes(v) if isinstance(v, bytearray) else v for v in value})
    raise CodecError("set members must all be strings, numbers or bytes")


def encode(value: Any) -> TaggedValue:
    if value is None or isinstance(value, (bool, str)):
        return _serializer.serialize(value)
    if isinstance(value, (bytes, bytearray)):
        return {"B": bytes(value)}
    if _is_number(value):
        return {"N": _number_text(value)}
    if isinstance(value, (list, tuple)):
        return {"L": [encode(v) for v in value]}
    if isinstance(value, Mapping):
        return {"M": encode_item(value)}
    if isinstance(value, (set, frozenset)):
        return _encode_set(value)
    raise CodecError(f"unsupported type: {type(value).__name__}")


def encode_item(values: Mapping[str, Any]) -> Item:
    out: Item = {}
    for name, value in values.items():
        if not isinstance(name, str):
            raise CodecError(f"attribute names must be strings (got {type(name).__name__})")
        out[name] = encode(value)
    return out


def _unwrap_binary(value: Any) -> Any:
    if isinstance(value, Binary):
        return value.value
    return value


def decode(tagged: Any) -> Any:
    if not isinstance(tagged, Mapping) or len(tagged) != 1:
        raise CodecError("tagged value must be a single-key map")
    (tag, payload), *_ = tagged.items()

    if tag == "N":
        return _number_from_text(payload)
    if tag == "NS":
        if not isinstance(payload, list):
            raise CodecError("NS value must be a list")
        return {_number_from_text(v) for v in payload}
    if tag == "L":
        if not isinstance(payload, list):
            raise CodecError("L value must be a list")
        return [decode(v) for v in payload]
    if tag == "M":
        if not isinstance(payload, Mapping):
            raise CodecError("M value must be a map")
        return decode_item_values(payload)
    check = _PAYLOAD_CHECKS.get(tag)
    if check is None:
        raise CodecError(f"unsupported attribute value type: {tag}")
    if not check(payload):
        raise CodecError(f"invalid {tag} value: {payload!r}")

    try:
        raw = _deserializer.deserialize({tag: payload})
    except (TypeError, ValueError) as err:
        raise CodecError(f"invalid {tag} value") from err
    if tag == "BS":
        return {_unwrap_binary(v) for v in raw}
    return _unwrap_binary(raw)


def decode_item_values(item: Mapping[str, Any]) -> dict[str, Any]:
    return {str(name): decode(value) for name, value in item.items()}


class ItemCodec[T](Protocol):
    def encode_struct(self, value: T) -> Item: ...

    def decode_item(self, item: Mapping[str, Any]) -> T: ...


@dataclass(frozen=True)
class _FieldMapping:
    python_name: str
    attribute_name: str
    annotation: Any
    omitempty: bool
    required: bool


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, bytearray, list, tuple, dict, set, frozenset)) and len(value) == 0:
        return True
    return False


def _is_union(annotation: Any) -> bool:
    return get_origin(annotation) in {Union, types.UnionType}


def _check_annotation(annotation: Any, path: str) -> None:
    if annotation is Any or annotation in {int, float, str, bool, bytes, Decimal, type(None)}:
        return
    if annotation in {list, dict, set, frozenset}:
        return

    origin = get_origin(annotation)
    args = get_args(annotation)
    if _is_union(annotation):
        for arg in args:
            _check_annotation(arg, path)
        return
    if origin in {list, set, frozenset}:
        for arg in args:
            _check_annotation(arg, path)
        return
    if origin is dict:
        if args and args[0] is not str:
            raise CodecError(f"{path}: map keys must be str (got {args[0]})")
        for arg in args[1:]:
            _check_annotation(arg, path)
        return

    raise CodecError(f"{path}: no mapping convention for {annotation!r}")


def _coerce(value: Any, annotation: Any, path: str) -> Any:
    if annotation is Any:
        return value

    if _is_union(annotation):
        for arg in get_args(annotation):
            try:
                return _coerce(value, arg, path)
            except CodecError:
                continue
        raise CodecError(f"{path}: expected {annotation}, got {type(value).__name__}")

    if annotation is type(None):
        if value is None:
            return None
        raise CodecError(f"{path}: expected null, got {type(value).__name__}")
    if annotation is bool:
        if isinstance(value, bool):
            return value
        raise CodecError(f"{path}: expected bool, got {type(value).__name__}")
    if annotation is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        raise CodecError(f"{path}: expected int, got {type(value).__name__}")
    if annotation is float:
        if _is_number(value):
            return float(value)
        raise CodecError(f"{path}: expected float, got {type(value).__name__}")
    if annotation is Decimal:
        if _is_number(value):
            try:
                return Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
            except InvalidOperation as err:
                raise CodecError(f"{path}: invalid decimal") from err
        raise CodecError(f"{path}: expected number, got {type(value).__name__}")
    if annotation is str:
        if isinstance(value, str):
            return value
        raise CodecError(f"{path}: expected str, got {type(value).__name__}")
    if annotation is bytes:
        if isinstance(value, bytes):
            return value
        raise CodecError(f"{path}: expected bytes, got {type(value).__name__}")

    origin = get_origin(annotation) or annotation
    args = get_args(annotation)
    if origin is list:
        if not isinstance(value, list):
            raise CodecError(f"{path}: expected list, got {type(value).__name__}")
        if not args:
            return value
        return [_coerce(v, args[0], f"{path}[{i}]") for i, v in enumerate(value)]
    if origin in {set, frozenset}:
        if not isinstance(value, set):
            raise CodecError(f"{path}: expected set, got {type(value).__name__}")
        out = {_coerce(v, args[0], path) for v in value} if args else value
        return frozenset(out) if origin is frozenset else out
    if origin is dict:
        if not isinstance(value, dict):
            raise CodecError(f"{path}: expected map, got {type(value).__name__}")
        if len(args) < 2:
            return value
        return {k: _coerce(v, args[1], f"{path}.{k}") for k, v in value.items()}

    raise CodecError(f"{path}: no mapping convention for {annotation!r}")


class DataclassCodec[T]:
    """ItemCodec for a dataclass, driven by its fields and ``kv_field`` metadata."""

    def __init__(self, model_type: type[T]) -> None:
        if not is_dataclass(model_type):
            raise CodecError(f"{model_type!r} is not a dataclass")

        try:
            hints = get_type_hints(model_type)
        except (NameError, TypeError) as err:
            raise CodecError(f"cannot resolve annotations of {model_type.__name__}") from err

        mappings: list[_FieldMapping] = []
        seen: set[str] = set()
        for dc_field in fields(cast(Any, model_type)):
            annotation = hints.get(dc_field.name, Any)
            _check_annotation(annotation, f"{model_type.__name__}.{dc_field.name}")
            opts = field_options(dc_field.metadata)
            attribute_name = cast(str, opts.get("name", dc_field.name))
            if attribute_name in seen:
                raise CodecError(f"{model_type.__name__}: duplicate attribute name {attribute_name!r}")
            seen.add(attribute_name)
            mappings.append(
                _FieldMapping(
                    python_name=dc_field.name,
                    attribute_name=attribute_name,
                    annotation=annotation,
                    omitempty=bool(opts.get("omitempty", False)),
                    required=dc_field.default is MISSING and dc_field.default_factory is MISSING,
                )
            )

        self._model_type = model_type
        self._fields = tuple(mappings)

    @property
    def model_type(self) -> type[T]:
        return self._model_type

    def encode_struct(self, value: T) -> Item:
        if not isinstance(value, self._model_type):
            raise CodecError(f"expected {self._model_type.__name__}, got {type(value).__name__}")

        out: Item = {}
        for mapping in self._fields:
            raw = getattr(value, mapping.python_name)
            if mapping.omitempty and _is_empty(raw):
                continue
            try:
                out[mapping.attribute_name] = encode(raw)
            except CodecError as err:
                raise CodecError(f"{self._model_type.__name__}.{mapping.python_name}: {err}") from err
        return out

    def to_values(self, value: T) -> dict[str, Any]:
        """Native attribute mapping of ``value``, as accepted by the client's write calls."""
        return decode_item_values(self.encode_struct(value))

    def decode_item(self, item: Mapping[str, Any]) -> T:
        return self.from_values(decode_item_values(item))

    def from_values(self, values: Mapping[str, Any]) -> T:
        """Build ``T`` from an already-decoded item, such as those yielded by the client."""
        kwargs: dict[str, Any] = {}
        for mapping in self._fields:
            path = f"{self._model_type.__name__}.{mapping.python_name}"
            if mapping.attribute_name not in values:
                if mapping.required:
                    raise CodecError(f"{path}: required attribute {mapping.attribute_name!r} is missing")
                continue
            kwargs[mapping.python_name] = _coerce(values[mapping.attribute_name], mapping.annotation, path)

        try:
            return self._model_type(**kwargs)
        except TypeError as err:
            raise CodecError(str(err)) from err
