"""
Aether Values
The runtime value model shared by the evaluator and the VM.

Values are plain Python objects:

    Null            None
    Boolean         bool
    Number          float
    String          str
    Array           list of values
    Object          dict of str -> value
    AsyncTaskHandle TaskHandle

``type_name`` is the one place that classifies a value; everything that
needs to branch on the variant goes through it, so a stray Python object
(an int from a capability, a tuple) fails loudly instead of leaking into
a program.
"""

import json
import math
from dataclasses import dataclass
from typing import Any

@dataclass(frozen=True)
class TaskHandle:
    """Opaque handle for a task handed to the async scheduler"""
    id: int

    def __str__(self) -> str:
        return f"<task {self.id}>"

NULL = 'Null'
BOOLEAN = 'Boolean'
NUMBER = 'Number'
STRING = 'String'
ARRAY = 'Array'
OBJECT = 'Object'
TASK = 'AsyncTaskHandle'

def type_name(value: Any) -> str:
    if value is None:
        return NULL
    # bool before float: bool is not a Number here
    if isinstance(value, bool):
        return BOOLEAN
    if isinstance(value, float):
        return NUMBER
    if isinstance(value, str):
        return STRING
    if isinstance(value, list):
        return ARRAY
    if isinstance(value, dict):
        return OBJECT
    if isinstance(value, TaskHandle):
        return TASK
    raise TypeError(f"{type(value).__name__} is not an Aether value")

def is_truthy(value: Any) -> bool:
    """Null, false, 0 and the empty string are falsy; everything else is truthy"""
    kind = type_name(value)
    if kind == NULL:
        return False
    if kind == BOOLEAN:
        return value
    if kind == NUMBER:
        return value != 0.0
    if kind == STRING:
        return value != ''
    return True

def values_equal(left: Any, right: Any) -> bool:
    left_kind = type_name(left)
    if left_kind != type_name(right):
        return False
    if left_kind == ARRAY:
        return len(left) == len(right) and all(values_equal(a, b) for a, b in zip(left, right))
    if left_kind == OBJECT:
        return left.keys() == right.keys() and all(values_equal(left[k], right[k]) for k in left)
    return left == right

def from_python(obj: Any) -> Any:
    """Convert JSON-like Python data into a value"""
    if obj is None or isinstance(obj, (bool, float, str, TaskHandle)):
        return obj
    if isinstance(obj, int):
        return float(obj)
    if isinstance(obj, bytes):
        return obj.decode('utf-8', errors='replace')
    if isinstance(obj, (list, tuple)):
        return [from_python(item) for item in obj]
    if isinstance(obj, dict):
        return {str(key): from_python(item) for key, item in obj.items()}
    raise TypeError(f"Cannot convert {type(obj).__name__} to an Aether value")

def to_python(value: Any) -> Any:
    """Convert a value to JSON-compatible Python data"""
    kind = type_name(value)
    if kind == NUMBER and value.is_integer():
        return int(value)
    if kind == ARRAY:
        return [to_python(item) for item in value]
    if kind == OBJECT:
        return {key: to_python(item) for key, item in value.items()}
    if kind == TASK:
        return str(value)
    return value

def format_number(number: float) -> str:
    if math.isinf(number):
        return '∞' if number > 0 else '-∞'
    if math.isnan(number):
        return 'NaN'
    if number.is_integer() and abs(number) < 1e16:
        return str(int(number))
    return repr(number)

def display(value: Any) -> str:
    """Text written by the output operation"""
    kind = type_name(value)
    if kind == NULL:
        return 'null'
    if kind == BOOLEAN:
        return 'true' if value else 'false'
    if kind == NUMBER:
        return format_number(value)
    if kind == STRING:
        return value
    if kind == TASK:
        return str(value)
    return json.dumps(to_python(value), ensure_ascii=False)

def represent(value: Any) -> str:
    """Like display, but strings are quoted (REPL echo)"""
    if type_name(value) == STRING:
        return json.dumps(value, ensure_ascii=False)
    return display(value)

def to_bytes(value: Any) -> bytes:
    """Byte view of a value for the opaque crypto capabilities"""
    if type_name(value) == STRING:
        return value.encode('utf-8')
    return display(value).encode('utf-8')
