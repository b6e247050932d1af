from __future__ import annotations

import pytest

from errors import InputError
from schema import ArgSchema, ArgValidator, apply_schema, apply_validator, convert_value


@pytest.mark.parametrize(
    "arg_type, raw, expected",
    [
        ("text", 12, "12"),
        ("text", True, "true"),
        ("int", "42", 42),
        ("int", 7.0, 7),
        ("int", False, 0),
        ("float", "2.5", 2.5),
        ("float", 3, 3.0),
        ("bool", "TRUE", True),
        ("bool", 0, False),
    ],
)
def test_conversions(arg_type, raw, expected):
    assert convert_value("x", raw, ArgSchema(type=arg_type)) == expected


@pytest.mark.parametrize(
    "arg_type, raw, fragment",
    [
        ("int", "abc", 'Can\'t convert argument "x" value \'abc\' to int'),
        ("int", 1.5, "has fractional part"),
        ("float", "nan-ish", "to float"),
        ("bool", 2, "to bool"),
        ("bool", "yes", "to bool"),
    ],
)
def test_conversion_errors(arg_type, raw, fragment):
    with pytest.raises(InputError) as excinfo:
        convert_value("x", raw, ArgSchema(type=arg_type))
    assert fragment in excinfo.value.message


def test_null_and_untyped_values_pass_through():
    assert convert_value("x", None, ArgSchema(type="int")) is None
    assert convert_value("x", "7", ArgSchema()) == "7"


def test_range_measures_text_length_and_numbers():
    short = ArgValidator("range", low=2, high=4)
    apply_validator(short, "x", "abc")
    apply_validator(short, "x", 3)

    with pytest.raises(InputError, match=r'"x" length 5 is not within a range 2\.\.=4'):
        apply_validator(short, "x", "abcde")
    with pytest.raises(InputError, match=r"value 1000001 is not within a range 1\.\.=1000000"):
        apply_validator(ArgValidator("range_float", low=1, high=1000000), "x", 1000001)
    with pytest.raises(InputError, match="must be a number or text"):
        apply_validator(short, "x", True)


def test_not_null():
    apply_validator(ArgValidator("not_null"), "x", 0)
    with pytest.raises(InputError, match="must not be null/undefined"):
        apply_validator(ArgValidator("not_null"), "x", None)


def test_and_or_combinators():
    small = ArgValidator("range_float", low=0, high=10)
    large = ArgValidator("range_float", low=100, high=200)
    either = ArgValidator("or", nested=(small, large))
    both = ArgValidator("and", nested=(ArgValidator("not_null"), small))

    apply_validator(either, "x", 150)
    apply_validator(both, "x", 5)
    with pytest.raises(InputError, match="100..=200"):
        apply_validator(either, "x", 50)
    with pytest.raises(InputError, match="must not be null"):
        apply_validator(both, "x", None)


def test_apply_schema_converts_provided_values_only():
    schema = {
        "id": ArgSchema(type="int", required=True),
        "title": ArgSchema(type="text", validate=(ArgValidator("range", low=1, high=5),)),
    }

    result = apply_schema(schema, {"id": "3", "other": "kept"})

    assert result == {"id": 3, "other": "kept"}


def test_apply_schema_required():
    with pytest.raises(InputError, match='Argument "id" is required'):
        apply_schema({"id": ArgSchema(required=True)}, {"title": "x"})
