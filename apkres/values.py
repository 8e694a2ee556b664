from struct import pack, unpack
from typing import Callable, NamedTuple, Union

from .internal_types import *

# Table used to lookup names for the value types
TYPE_TABLE = {
    TYPE_ATTRIBUTE: "attribute",
    TYPE_DIMENSION: "dimension",
    TYPE_DYNAMIC_ATTRIBUTE: "dynamic_attribute",
    TYPE_DYNAMIC_REFERENCE: "dynamic_reference",
    TYPE_FLOAT: "float",
    TYPE_FRACTION: "fraction",
    TYPE_INT_BOOLEAN: "int_boolean",
    TYPE_INT_COLOR_ARGB4: "int_color_argb4",
    TYPE_INT_COLOR_ARGB8: "int_color_argb8",
    TYPE_INT_COLOR_RGB4: "int_color_rgb4",
    TYPE_INT_COLOR_RGB8: "int_color_rgb8",
    TYPE_INT_DEC: "int_dec",
    TYPE_INT_HEX: "int_hex",
    TYPE_NULL: "null",
    TYPE_REFERENCE: "reference",
    TYPE_STRING: "string",
}

RADIX_MULTS = [0.00390625, 3.051758e-005, 1.192093e-007, 4.656613e-010]
DIMENSION_UNITS = ["px", "dip", "sp", "pt", "in", "mm"]
FRACTION_UNITS = ["%", "%p"]

COMPLEX_UNIT_MASK = 0x0F

AttributeValue = Union[None, str, int, bool]


class TypedValue(NamedTuple):
    """
    The three raw words of an attribute value as stored in the AXML record:
    the string pool index of the raw string (NO_INDEX if none), the
    `flags_and_type` word (data type in the top byte) and the data word.
    """

    string_id: int
    flags: int
    data: int

    @property
    def value_type(self) -> int:
        return self.flags >> 24

    @property
    def is_string(self) -> bool:
        return self.string_id != NO_INDEX


def convert_value(
    string_id: int, flags: int, value: int, lookup_string: Callable[[int], str]
) -> AttributeValue:
    """
    Convert the raw words of an attribute into a python value.

    A set string id always wins: the value is the pool string. Otherwise the
    top byte of `flags` selects the interpretation:

    * TYPE_NULL: `None`
    * TYPE_REFERENCE: `"@0x7f040001"`
    * TYPE_INT_DEC: the integer
    * TYPE_INT_HEX: `"0x10"`
    * TYPE_INT_BOOLEAN: `True` only for `1` and `0xFFFFFFFF`, `False` otherwise
    * anything else: `"[0x<value>, flag=0x<flags>]"`

    :param lookup_string: resolves a string pool index
    """
    if string_id != NO_INDEX:
        return lookup_string(string_id)

    _type = flags >> 24
    if _type == TYPE_NULL:
        return None
    if _type == TYPE_REFERENCE:
        return "@0x{:x}".format(value)
    if _type == TYPE_INT_DEC:
        return value
    if _type == TYPE_INT_HEX:
        return "0x{:x}".format(value)
    if _type == TYPE_INT_BOOLEAN:
        return value == 0xFFFFFFFF or value == 1
    return "[0x{:x}, flag=0x{:x}]".format(value, flags)


def complex_to_float(xcomplex: int) -> float:
    """
    Convert a complex unit into float
    """
    return float(xcomplex & 0xFFFFFF00) * RADIX_MULTS[(xcomplex >> 4) & 3]


def format_value(
    _type: int, _data: int, lookup_string=lambda ix: "<string>"
) -> str:
    """
    Format a value based on type and data.
    By default, no strings are looked up and `"<string>"` is returned.
    You need to define `lookup_string` in order to actually lookup strings from
    the string table.

    :param _type: The numeric type of the value
    :param _data: The numeric data of the value
    :param lookup_string: A function how to resolve strings from integer IDs
    :returns: the formatted string
    """

    # Function to prepend android prefix for attributes/references from the
    # android library
    fmt_package = lambda x: "android:" if x >> 24 == 1 else ""

    # Function to represent integers
    fmt_int = lambda x: (0x7FFFFFFF & x) - 0x80000000 if x > 0x7FFFFFFF else x

    if _type == TYPE_STRING:
        return lookup_string(_data)

    elif _type == TYPE_ATTRIBUTE:
        return "?{}{:08X}".format(fmt_package(_data), _data)

    elif _type == TYPE_REFERENCE:
        return "@{}{:08X}".format(fmt_package(_data), _data)

    elif _type == TYPE_FLOAT:
        return "%f" % unpack("=f", pack("=L", _data))[0]

    elif _type == TYPE_INT_HEX:
        return "0x%08X" % _data

    elif _type == TYPE_INT_BOOLEAN:
        if _data == 0:
            return "false"
        return "true"

    elif _type == TYPE_DIMENSION and (_data & COMPLEX_UNIT_MASK) < len(DIMENSION_UNITS):
        return "{:f}{}".format(
            complex_to_float(_data), DIMENSION_UNITS[_data & COMPLEX_UNIT_MASK]
        )

    elif _type == TYPE_FRACTION and (_data & COMPLEX_UNIT_MASK) < len(FRACTION_UNITS):
        return "{:f}{}".format(
            complex_to_float(_data) * 100,
            FRACTION_UNITS[_data & COMPLEX_UNIT_MASK],
        )

    elif TYPE_FIRST_COLOR_INT <= _type <= TYPE_LAST_COLOR_INT:
        return "#%08X" % _data

    elif TYPE_FIRST_INT <= _type <= TYPE_LAST_INT:
        return "%d" % fmt_int(_data)

    return "<0x{:X}, type 0x{:02X}>".format(_data, _type)
