from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from decimal import Decimal
from typing import Any, Literal, cast, get_type_hints, overload

from .errors import InvalidKeyError, ValidationError

type ScalarType = Literal["S", "N", "B"]

_SCALAR_TYPES: frozenset[str] = frozenset({"S", "N", "B"})


class ModelDefinitionError(ValueError):
    pass


@dataclass(frozen=True)
class KeyAttribute:
    name: str
    type: ScalarType

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("key attribute name is required")
        if self.type not in _SCALAR_TYPES:
            raise ValidationError(f"key attribute must be S/N/B: {self.name} (got {self.type})")

    @staticmethod
    def string(name: str) -> KeyAttribute:
        return KeyAttribute(name=name, type="S")

    @staticmethod
    def number(name: str) -> KeyAttribute:
        return KeyAttribute(name=name, type="N")

    @staticmethod
    def binary(name: str) -> KeyAttribute:
        return KeyAttribute(name=name, type="B")


@dataclass(frozen=True)
class KeySchema:
    """Composite key of a table: one partition attribute and an optional sort attribute."""

    partition: KeyAttribute
    sort: KeyAttribute | None = None

    def __post_init__(self) -> None:
        if self.sort is not None and self.sort.name == self.partition.name:
            raise ValidationError(f"partition and sort key must differ: {self.partition.name}")

    @property
    def attribute_names(self) -> tuple[str, ...]:
        if self.sort is None:
            return (self.partition.name,)
        return (self.partition.name, self.sort.name)

    def key_schema_elements(self) -> list[dict[str, str]]:
        elements = [{"AttributeName": self.partition.name, "KeyType": "HASH"}]
        if self.sort is not None:
            elements.append({"AttributeName": self.sort.name, "KeyType": "RANGE"})
        return elements

    def attribute_definitions(self) -> list[dict[str, str]]:
        attrs = [self.partition] if self.sort is None else [self.partition, self.sort]
        return [{"AttributeName": a.name, "AttributeType": a.type} for a in attrs]

    def validate_key(self, key: Mapping[str, Any], *, operation: str, table_name: str | None = None) -> None:
        expected = set(self.attribute_names)
        got = set(key.keys())
        if got != expected:
            missing = sorted(expected - got)
            extra = sorted(got - expected)
            details = []
            if missing:
                details.append(f"missing {missing}")
            if extra:
                details.append(f"unexpected {extra}")
            raise InvalidKeyError(
                f"key must contain exactly {sorted(expected)} ({', '.join(details)})",
                operation=operation,
                table_name=table_name,
            )
        for attr in (self.partition, self.sort):
            if attr is not None:
                check_key_value(attr, key[attr.name], operation=operation, table_name=table_name)

    def validate_item(
        self, item: Mapping[str, Any], *, operation: str, table_name: str | None = None
    ) -> None:
        """Check an encoded item carries every key attribute with the declared tag."""
        missing = [name for name in self.attribute_names if name not in item]
        if missing:
            raise InvalidKeyError(
                f"item is missing key attribute(s) {missing}", operation=operation, table_name=table_name
            )
        for attr in (self.partition, self.sort):
            if attr is None:
                continue
            tagged = item[attr.name]
            if not isinstance(tagged, Mapping) or attr.type not in tagged:
                raise InvalidKeyError(
                    f"key attribute {attr.name} must be of type {attr.type}",
                    operation=operation,
                    table_name=table_name,
                )

    @classmethod
    def from_description(cls, description: Mapping[str, Any]) -> KeySchema:
        """Rebuild a schema from a DescribeTable ``Table`` block."""
        types = {
            str(d["AttributeName"]): str(d["AttributeType"])
            for d in description.get("AttributeDefinitions", [])
        }
        partition: KeyAttribute | None = None
        sort: KeyAttribute | None = None
        for element in description.get("KeySchema", []):
            name = str(element["AttributeName"])
            if name not in types:
                raise ValidationError(f"key attribute has no definition: {name}")
            attr = KeyAttribute(name=name, type=cast(ScalarType, types[name]))
            if element.get("KeyType") == "HASH":
                partition = attr
            elif element.get("KeyType") == "RANGE":
                sort = attr
        if partition is None:
            raise ValidationError("table description has no HASH key")
        return cls(partition=partition, sort=sort)

    @classmethod
    def from_dataclass(cls, model_type: type[Any]) -> KeySchema:
        if not is_dataclass(model_type):
            raise ModelDefinitionError("model_type must be a dataclass")

        hints = get_type_hints(model_type)
        pk: list[KeyAttribute] = []
        sk: list[KeyAttribute] = []
        for dc_field in fields(model_type):
            opts = field_options(dc_field.metadata)
            roles = opts.get("roles", ())
            if not roles:
                continue
            attr = KeyAttribute(
                name=cast(str, opts.get("name", dc_field.name)),
                type=_scalar_type_for_annotation(hints.get(dc_field.name, Any), dc_field.name),
            )
            if "pk" in roles:
                pk.append(attr)
            if "sk" in roles:
                sk.append(attr)

        if len(pk) != 1:
            raise ModelDefinitionError(f"model must define exactly one pk field (found {len(pk)})")
        if len(sk) > 1:
            raise ModelDefinitionError(f"model must define at most one sk field (found {len(sk)})")
        return cls(partition=pk[0], sort=sk[0] if sk else None)


def check_key_value(attr: KeyAttribute, value: Any, *, operation: str, table_name: str | None) -> None:
    if attr.type == "S":
        ok = isinstance(value, str)
    elif attr.type == "N":
        ok = isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)
    else:
        ok = isinstance(value, (bytes, bytearray))
    if not ok:
        raise InvalidKeyError(
            f"key attribute {attr.name} must be of type {attr.type} (got {type(value).__name__})",
            operation=operation,
            table_name=table_name,
        )


def _scalar_type_for_annotation(annotation: Any, field_name: str) -> ScalarType:
    if annotation is str:
        return "S"
    if annotation in {int, float, Decimal}:
        return "N"
    if annotation in {bytes, bytearray}:
        return "B"
    raise ModelDefinitionError(f"key field must be str, number or bytes: {field_name} (got {annotation})")


def field_options(metadata: Mapping[str, Any]) -> dict[str, Any]:
    return cast(dict[str, Any], metadata.get("kvfacade", {}))


@overload
def kv_field(
    *,
    name: str | None = None,
    roles: Sequence[str] | None = None,
    omitempty: bool = False,
) -> Any: ...


@overload
def kv_field(
    *,
    name: str | None = None,
    roles: Sequence[str] | None = None,
    omitempty: bool = False,
    default: Any,
) -> Any: ...


@overload
def kv_field(
    *,
    name: str | None = None,
    roles: Sequence[str] | None = None,
    omitempty: bool = False,
    default_factory: Any,
) -> Any: ...


def kv_field(
    *,
    name: str | None = None,
    roles: Sequence[str] | None = None,
    omitempty: bool = False,
    default: Any = MISSING,
    default_factory: Any = MISSING,
) -> Any:
    """Dataclass field carrying the attribute name, key role and omit-empty flag."""
    if default is not MISSING and default_factory is not MISSING:
        raise ValueError("kv_field: cannot set both default and default_factory")

    opts: dict[str, Any] = {"omitempty": omitempty}
    if name is not None:
        opts["name"] = name
    if roles is not None:
        unknown = set(roles) - {"pk", "sk"}
        if unknown:
            raise ValueError(f"kv_field: unknown roles {sorted(unknown)}")
        opts["roles"] = tuple(roles)

    return field(default=default, default_factory=default_factory, metadata={"kvfacade": opts})
