"""
Aether Operations
Value-level primitives shared by the evaluator and the VM, so both paths
compute identical results and raise identical error kinds.
"""

import json
import math
from typing import Any, List

import regex

from .errors import AetherRuntimeError, RuntimeErrorKind
from .symbols import Op
from .values import (ARRAY, NULL, NUMBER, OBJECT, STRING, TaskHandle, display, from_python,
                     is_truthy, to_bytes, type_name, values_equal)

APPROX_EPSILON = 1e-6

def _mismatch(message: str) -> AetherRuntimeError:
    return AetherRuntimeError(RuntimeErrorKind.TYPE_MISMATCH, message)

def require_number(value: Any, operation: str) -> float:
    if type_name(value) != NUMBER:
        raise _mismatch(f"{operation} expects a Number, got {type_name(value)}")
    return value

def require_string(value: Any, operation: str) -> str:
    if type_name(value) != STRING:
        raise _mismatch(f"{operation} expects a String, got {type_name(value)}")
    return value

# Arithmetic

def arithmetic(kind: str, left: Any, right: Any) -> float:
    a = require_number(left, kind.lower())
    b = require_number(right, kind.lower())
    if kind == 'ADD':
        return a + b
    if kind == 'SUB':
        return a - b
    if kind == 'MUL':
        return a * b
    if kind == 'DIV':
        if b == 0.0:
            raise AetherRuntimeError(RuntimeErrorKind.DIVISION_BY_ZERO, "Division by zero")
        return a / b
    if kind == 'POWER':
        try:
            return math.pow(a, b)
        except (ValueError, OverflowError) as exc:
            raise AetherRuntimeError(RuntimeErrorKind.DOMAIN_ERROR,
                                     f"{a!r} ↑ {b!r} is undefined: {exc}") from exc
    if kind == 'ROOT':
        return root(a, b)
    raise ValueError(f"Unknown arithmetic kind {kind}")

def root(value: Any, degree: Any = 2.0) -> float:
    radicand = require_number(value, 'root')
    degree = require_number(degree, 'root')
    if degree == 0.0:
        raise AetherRuntimeError(RuntimeErrorKind.DIVISION_BY_ZERO, "Zeroth root")
    if radicand < 0.0:
        raise AetherRuntimeError(RuntimeErrorKind.DOMAIN_ERROR,
                                 f"Root of negative number {radicand!r}")
    if degree == 2.0:
        return math.sqrt(radicand)
    return math.pow(radicand, 1.0 / degree)

# Comparison and logic

def compare(kind: str, left: Any, right: Any) -> bool:
    if kind == 'EQUAL':
        return values_equal(left, right)
    if kind == 'NOT_EQUAL':
        return not values_equal(left, right)
    if kind == 'APPROX':
        a = require_number(left, 'approx')
        b = require_number(right, 'approx')
        return abs(a - b) < APPROX_EPSILON

    left_kind, right_kind = type_name(left), type_name(right)
    if left_kind != right_kind or left_kind not in (NUMBER, STRING):
        raise _mismatch(f"Cannot order {left_kind} and {right_kind}")
    if kind == 'LESS_THAN':
        return left < right
    if kind == 'GREATER_THAN':
        return left > right
    raise ValueError(f"Unknown comparison kind {kind}")

def logic(kind: str, left: Any, right: Any) -> bool:
    if kind == 'AND':
        return is_truthy(left) and is_truthy(right)
    return is_truthy(left) or is_truthy(right)

# Collections

def index(target: Any, key: Any) -> Any:
    kind = type_name(target)
    if kind == NULL:
        raise AetherRuntimeError(RuntimeErrorKind.NULL_DEREFERENCE,
                                 f"Cannot index Null with {key!r}")
    if kind == OBJECT:
        return target.get(require_string(key, 'field access'))
    if kind in (ARRAY, STRING):
        position = require_number(key, 'index')
        if not position.is_integer():
            raise _mismatch(f"Index {position!r} is not a whole number")
        position = int(position)
        if not -len(target) <= position < len(target):
            raise AetherRuntimeError(RuntimeErrorKind.INDEX_OUT_OF_RANGE,
                                     f"Index {position} out of range for length {len(target)}")
        return target[position]
    raise _mismatch(f"Cannot index {kind}")

def iterate(collection: Any) -> List[Any]:
    kind = type_name(collection)
    if kind == ARRAY:
        return list(collection)
    if kind == STRING:
        return list(collection)
    if kind == OBJECT:
        return sorted(collection)
    raise _mismatch(f"Cannot iterate over {kind}")

def make_object(pairs) -> dict:
    result = {}
    for key, value in pairs:
        result[require_string(key, 'object key')] = value
    return result

def total(collection: Any) -> float:
    if type_name(collection) != ARRAY:
        raise _mismatch(f"∑ expects an Array, got {type_name(collection)}")
    result = 0.0
    for item in collection:
        result += require_number(item, '∑')
    return result

# Text

def split(text: Any, delimiter: Any) -> List[str]:
    text = require_string(text, 'split')
    delimiter = require_string(delimiter, 'split')
    if delimiter == '':
        return list(text)
    return text.split(delimiter)

def join(items: Any, separator: Any) -> str:
    if type_name(items) != ARRAY:
        raise _mismatch(f"join expects an Array, got {type_name(items)}")
    separator = require_string(separator, 'join')
    return separator.join(display(item) for item in items)

def regex_search(text: Any, pattern: Any) -> Any:
    text = require_string(text, 'regex')
    pattern = require_string(pattern, 'regex')
    try:
        match = regex.search(pattern, text)
    except regex.error as exc:
        raise AetherRuntimeError(RuntimeErrorKind.INVALID_VALUE,
                                 f"Bad pattern {pattern!r}: {exc}") from exc
    return match.group(0) if match else None

def parse_json(text: Any) -> Any:
    text = require_string(text, 'J')
    try:
        return from_python(json.loads(text))
    except ValueError as exc:
        raise AetherRuntimeError(RuntimeErrorKind.INVALID_VALUE, f"Invalid JSON: {exc}") from exc

def require_task(value: Any) -> TaskHandle:
    if not isinstance(value, TaskHandle):
        raise _mismatch(f"⏳ expects a task handle, got {type_name(value)}")
    return value

def check_assertion(value: Any) -> bool:
    if not is_truthy(value):
        raise AetherRuntimeError(RuntimeErrorKind.ASSERTION_FAILED, "Assertion failed")
    return True

# Host operations

def call_builtin(op: Op, args: List[Any], capabilities) -> Any:
    """Run a host operation; operands arrive fully evaluated"""
    if op is Op.SPLIT:
        return split(*args)
    if op is Op.JOIN:
        return join(*args)
    if op is Op.REGEX:
        return regex_search(*args)
    if op is Op.HASH:
        return capabilities.hash(to_bytes(args[0]))
    if op is Op.ENCRYPT:
        return capabilities.encrypt(to_bytes(args[0]), to_bytes(args[1]))
    if op is Op.DECRYPT:
        plain = capabilities.decrypt(require_string(args[0], 'decrypt'), to_bytes(args[1]))
        return plain.decode('utf-8', errors='replace')
    if op is Op.SIGN:
        return capabilities.sign(to_bytes(args[0]), to_bytes(args[1]))
    if op is Op.VERIFY:
        return bool(capabilities.verify(require_string(args[1], 'verify'),
                                        to_bytes(args[0]), to_bytes(args[2])))
    if op is Op.HTTP_GET:
        return from_python(capabilities.http_get(require_string(args[0], 'http get')))
    if op is Op.DATETIME:
        return capabilities.now()
    if op is Op.RANDOM:
        return float(capabilities.random())
    if op is Op.LOG:
        capabilities.log(args[0])
        return args[0]
    if op is Op.ENV:
        return capabilities.env(require_string(args[0], 'env'))
    if op is Op.FILE_READ:
        return capabilities.read_file(require_string(args[0], 'file read'))
    if op is Op.FILE_WRITE:
        capabilities.write_file(require_string(args[1], 'file write'), require_string(args[0], 'file write'))
        return args[0]
    if op is Op.FILE_APPEND:
        capabilities.append_file(require_string(args[1], 'file append'), require_string(args[0], 'file append'))
        return args[0]
    raise ValueError(f"{op.name} is not a host operation")
