"""Typed request arguments: conversion, required checks and validators."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Mapping, Optional

from errors import InputError

ARG_TYPES = ("text", "int", "float", "bool")
VALIDATOR_KINDS = ("range", "range_float", "not_null", "and", "or")


@dataclass(frozen=True)
class ArgValidator:
    kind: str
    low: float = 0
    high: float = 0
    nested: tuple["ArgValidator", ...] = ()


@dataclass(frozen=True)
class ArgSchema:
    type: Optional[str] = None
    required: bool = False
    validate: tuple[ArgValidator, ...] = ()


# --------------------------------------------------------------------------------------
# Conversion
# --------------------------------------------------------------------------------------


def _cannot(name: str, value: object, type_name: str, reason: str = "") -> InputError:
    detail = f": {reason}" if reason else ""
    return InputError(f'Can\'t convert argument "{name}" value {value!r} to {type_name}{detail}')


def _to_text(name: str, value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _to_int(name: str, value: object) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise _cannot(name, value, "int", "has fractional part")
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        raise _cannot(name, value, "int") from None


def _to_float(name: str, value: object) -> float:
    if isinstance(value, (bool, int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        raise _cannot(name, value, "float") from None


def _to_bool(name: str, value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value in (0, 1):
            return bool(value)
        raise _cannot(name, value, "bool")
    lowered = str(value).strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    raise _cannot(name, value, "bool")


_CONVERTERS = {"text": _to_text, "int": _to_int, "float": _to_float, "bool": _to_bool}


def convert_value(name: str, value: object, arg_schema: ArgSchema) -> object:
    """Convert a raw request value to the declared type. Null stays null."""

    if value is None or arg_schema.type is None:
        return value
    return _CONVERTERS[arg_schema.type](name, value)


# --------------------------------------------------------------------------------------
# Validation
# --------------------------------------------------------------------------------------


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def apply_validator(validator: ArgValidator, name: str, value: object) -> None:
    if validator.kind == "not_null":
        if value is None:
            raise InputError(f'Argument "{name}" must not be null/undefined')
        return

    if validator.kind in ("range", "range_float"):
        if isinstance(value, str):
            measured: float = len(value)
            label = "length"
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            measured = value
            label = "value"
        else:
            raise InputError(f'Argument "{name}" must be a number or text, but got {value!r}')
        if measured < validator.low or measured > validator.high:
            raise InputError(
                f'Argument "{name}" {label} {_number(measured)} is not within a range '
                f"{_number(validator.low)}..={_number(validator.high)}"
            )
        return

    if validator.kind == "and":
        for nested in validator.nested:
            apply_validator(nested, name, value)
        return

    if validator.kind == "or":
        last_error: Optional[InputError] = None
        for nested in validator.nested:
            try:
                apply_validator(nested, name, value)
                return
            except InputError as exc:
                last_error = exc
        if last_error is not None:
            raise last_error


def apply_schema(schema: Mapping[str, ArgSchema], values: dict[str, object]) -> dict[str, object]:
    """Convert and validate ``values`` in place of the raw request input.

    Only arguments that were actually provided are converted and validated;
    required ones must be present.
    """

    for name, arg_schema in schema.items():
        if arg_schema.required and name not in values:
            raise InputError(f'Argument "{name}" is required')

    result = dict(values)
    for name, value in values.items():
        arg_schema = schema.get(name)
        if arg_schema is None:
            continue
        converted = convert_value(name, value, arg_schema)
        for validator in arg_schema.validate:
            apply_validator(validator, name, converted)
        result[name] = converted
    return result
