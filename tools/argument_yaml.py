"""
argument_yaml.py - Text descriptions of argument trees

Converts argument trees to and from plain dicts, and through PyYAML to
YAML documents, so values can be authored and inspected as text:

    type: struct
    name: root
    fields:
      - {type: int32, name: a, value: 1}
      - {type: blob, name: raw, hex: deadbeef}
      - {type: array, name: arr, element_type: int32, values: [13, 14, 88]}
      - type: array
        name: rows
        element_type: struct
        values:
          - fields: [{type: uint64, name: id, value: 7}]

Usage:
    from argument_yaml import load_argument_yaml, dump_argument_yaml

    root = load_argument_yaml(text)
    print(dump_argument_yaml(root))
"""

import base64
from typing import Any, Dict

import yaml

from argument_proto import (
    Argument, ArgumentType, Array, Blob, Float64, Int32, Scalar, String,
    Struct, UInt64,
)


TYPE_NAMES = {
    ArgumentType.INT32: 'int32',
    ArgumentType.UINT64: 'uint64',
    ArgumentType.FLOAT64: 'float64',
    ArgumentType.STRING: 'string',
    ArgumentType.ARRAY: 'array',
    ArgumentType.STRUCT: 'struct',
    ArgumentType.BLOB: 'blob',
}

# Accepted spellings when reading descriptions
TYPE_MAP = {
    'int32': ArgumentType.INT32,
    'i32': ArgumentType.INT32,
    's32': ArgumentType.INT32,
    'uint64': ArgumentType.UINT64,
    'u64': ArgumentType.UINT64,
    'float64': ArgumentType.FLOAT64,
    'f64': ArgumentType.FLOAT64,
    'double': ArgumentType.FLOAT64,
    'string': ArgumentType.STRING,
    'str': ArgumentType.STRING,
    'array': ArgumentType.ARRAY,
    'struct': ArgumentType.STRUCT,
    'object': ArgumentType.STRUCT,
    'blob': ArgumentType.BLOB,
    'bytes': ArgumentType.BLOB,
}

SCALAR_CLASSES = {
    ArgumentType.INT32: Int32,
    ArgumentType.UINT64: UInt64,
    ArgumentType.FLOAT64: Float64,
    ArgumentType.STRING: String,
}


def _parse_type(type_str: Any) -> ArgumentType:
    """Parse a type string from a description."""
    if isinstance(type_str, str) and type_str.lower() in TYPE_MAP:
        return TYPE_MAP[type_str.lower()]
    raise ValueError(f"Unknown type: {type_str}")


def argument_to_dict(argument: Argument) -> Dict[str, Any]:
    """Describe an argument tree as plain dicts and lists."""
    d = {
        'type': TYPE_NAMES[argument.type],
        'name': argument.name,
    }

    if isinstance(argument, Scalar):
        d['value'] = argument.value
    elif isinstance(argument, Blob):
        d['hex'] = argument.data.hex()
    elif isinstance(argument, Struct):
        d['fields'] = [argument_to_dict(child) for child in argument]
    elif isinstance(argument, Array):
        d['element_type'] = TYPE_NAMES[argument.element_type]
        if argument.element_type == ArgumentType.STRUCT:
            d['values'] = [
                {'fields': [argument_to_dict(child) for child in element]}
                for element in argument
            ]
        else:
            d['values'] = list(argument.values)

    return d


def _blob_data(field_def: dict) -> bytes:
    if 'hex' in field_def:
        return bytes.fromhex(str(field_def['hex']))
    if 'base64' in field_def:
        return base64.b64decode(str(field_def['base64']))
    value = field_def.get('value')
    if value is None:
        return b''
    if isinstance(value, str):
        return value.encode('utf-8')
    return value


def _struct_element(element_def: Any) -> Struct:
    if not isinstance(element_def, dict):
        raise ValueError(
            f"Struct array element must be a mapping, "
            f"got {type(element_def).__name__}")
    return Struct(str(element_def.get('name', '')),
                  [dict_to_argument(f) for f in element_def.get('fields') or []])


def dict_to_argument(field_def: Dict[str, Any]) -> Argument:
    """Build an argument tree from its dict description."""
    if not isinstance(field_def, dict):
        raise ValueError(
            f"Argument description must be a mapping, "
            f"got {type(field_def).__name__}")

    type_str = field_def.get('type')
    if type_str is None:
        if 'fields' not in field_def:
            raise ValueError("Argument description needs a 'type'")
        type_str = 'struct'
    kind = _parse_type(type_str)
    name = field_def.get('name')
    name = '' if name is None else str(name)

    if kind in SCALAR_CLASSES:
        return SCALAR_CLASSES[kind](name, field_def.get('value'))

    if kind == ArgumentType.BLOB:
        return Blob(name, _blob_data(field_def))

    if kind == ArgumentType.STRUCT:
        return Struct(name, [dict_to_argument(f)
                             for f in field_def.get('fields') or []])

    element_type = field_def.get('element_type')
    if element_type is None:
        raise ValueError(f"Array '{name}' needs an 'element_type'")
    element_kind = _parse_type(element_type)
    values = field_def.get('values') or []
    if element_kind == ArgumentType.STRUCT:
        values = [_struct_element(v) for v in values]
    return Array(name, element_kind, values)


def dump_argument_yaml(argument: Argument) -> str:
    """Render an argument tree as a YAML document."""
    return yaml.safe_dump(argument_to_dict(argument), sort_keys=False,
                          default_flow_style=False, allow_unicode=True)


def load_argument_yaml(text: str) -> Argument:
    """Parse a YAML (or JSON) document into an argument tree."""
    return dict_to_argument(yaml.safe_load(text))
