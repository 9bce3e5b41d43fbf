# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Parse and format property strings like 'kvm64,flags=+pcid;-aes,hidden=1' according to a schema.

A schema is a dictionary of property descriptions (see 'PropertyTypedDict'). One property of the
schema may be the "default key": its value can be given without the 'key=' part.
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import typing
from vmcpulibs.helperlibs import Trivial
from vmcpulibs.helperlibs.Exceptions import Error, ErrorBadFormat

if typing.TYPE_CHECKING:
    from typing import TypedDict, Literal, Union, Callable, Any, Pattern

    PropertyTypeType = Literal["str", "bool", "int"]
    PropertyValueType = Union[str, bool, int]

    class PropertyTypedDict(TypedDict, total=False):
        """
        Type for the property description dictionary.

        Attributes:
            type: The type of the property value.
            description: A short description of the property.
            format_description: A short description of the value format for help texts.
            default: The default value of the property (informational, not applied by the parser).
            default_key: Whether the value of this property can be specified without the key.
            optional: Whether the property may be omitted.
            pattern: A compiled regular expression the whole value must match.
            enum: The allowed values.
            verify: A function validating the value. Gets the value, returns the normalized value
                    or raises 'Error'.
        """

        type: PropertyTypeType
        description: str
        format_description: str
        default: PropertyValueType
        default_key: bool
        optional: bool
        pattern: Pattern[str]
        enum: list[str]
        verify: Callable[[str], str]

    SchemaType = dict[str, PropertyTypedDict]

def get_default_key(schema: SchemaType) -> str | None:
    """
    Return the name of the default key property of a schema.

    Args:
        schema: The schema to get the default key of.

    Returns:
        The default key property name, or 'None' if the schema does not have one.
    """

    for key, prop in schema.items():
        if prop.get("default_key"):
            return key
    return None

def validate_value(schema: SchemaType, key: str, value: Any) -> PropertyValueType:
    """
    Validate a value of a schema property and return the value converted to the property type.

    Args:
        schema: The schema describing the property.
        key: The property name.
        value: The value to validate.

    Returns:
        The validated value, converted to the property type.

    Raises:
        ErrorBadFormat: If the property is unknown or the value is invalid.
    """

    if key not in schema:
        raise ErrorBadFormat(f"Unknown property '{key}'")

    prop = schema[key]
    what = f"value of property '{key}'"

    if prop["type"] == "bool":
        return Trivial.str_to_bool(value, what=what)
    if prop["type"] == "int":
        return Trivial.str_to_int(value, what=what)

    value = str(value)
    if not value:
        raise ErrorBadFormat(f"Empty {what}")

    if "enum" in prop and value not in prop["enum"]:
        raise ErrorBadFormat(f"Bad {what} '{value}': should be one of: {', '.join(prop['enum'])}")

    if "pattern" in prop and not prop["pattern"].fullmatch(value):
        fmt = prop.get("format_description", prop["pattern"].pattern)
        raise ErrorBadFormat(f"Bad {what} '{value}': should be in the '{fmt}' format")

    if "verify" in prop:
        try:
            value = prop["verify"](value)
        except Error as err:
            raise ErrorBadFormat(f"Bad {what} '{value}': {err}") from err

    return value

def parse_property_string(schema: SchemaType, text: str) -> dict[str, PropertyValueType]:
    """
    Parse a property string according to a schema.

    Args:
        schema: The schema describing the properties.
        text: The property string to parse (e.g., 'kvm64,flags=+pcid,hidden=1').

    Returns:
        A dictionary of property names and validated values.

    Raises:
        ErrorBadFormat: If the property string is malformed or does not conform to the schema.
    """

    default_key = get_default_key(schema)
    result: dict[str, PropertyValueType] = {}

    for part in str(text).split(","):
        part = part.strip()
        if not part:
            continue

        if "=" in part:
            key, value = part.split("=", 1)
            key = key.strip()
        elif default_key:
            key, value = default_key, part
        else:
            raise ErrorBadFormat(f"Value without key in '{text}'")

        if key in result:
            if key == default_key and "=" not in part:
                raise ErrorBadFormat(f"Value without key in '{text}'")
            raise ErrorBadFormat(f"Duplicate property '{key}' in '{text}'")

        result[key] = validate_value(schema, key, value.strip())

    for key, prop in schema.items():
        if not prop.get("optional") and key not in result:
            raise ErrorBadFormat(f"Property '{key}' is missing in '{text}'")

    return result

def format_value(value: PropertyValueType) -> str:
    """
    Format a property value for a property string or a configuration file.

    Args:
        value: The value to format.

    Returns:
        The formatted value. Booleans are formatted as '1' and '0'.
    """

    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)

def format_property_string(schema: SchemaType, data: dict[str, PropertyValueType]) -> str:
    """
    Format a property string. This is the inverse of 'parse_property_string()'.

    Args:
        schema: The schema describing the properties.
        data: The property names and values to format. Properties with 'None' values are skipped.

    Returns:
        The property string. The default key goes first and without the key name, the rest of the
        properties go in the schema order.
    """

    default_key = get_default_key(schema)
    parts = []

    if default_key and data.get(default_key) is not None:
        parts.append(format_value(data[default_key]))

    for key in schema:
        if key == default_key or data.get(key) is None:
            continue
        parts.append(f"{key}={format_value(data[key])}")

    return ",".join(parts)
