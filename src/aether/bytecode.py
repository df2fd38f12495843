"""
Aether Bytecode
Opcode table, the BytecodeProgram container and its binary encoding.

Container layout (all integers big-endian):

    magic        4 bytes  b"AEB\\x00"
    version      1 byte
    constants    u32 count, then per constant: u32 length + UTF-8 bytes
    code         u32 length, then the instruction bytes

Each instruction is one opcode byte followed by a fixed-width operand
(0, 1, 4 or 8 bytes, see OPERAND_FORMATS).
"""

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Tuple

from .errors import BytecodeError, BytecodeErrorKind

MAGIC = b'AEB\x00'
VERSION = 1

class Opcode(IntEnum):
    # stack
    PUSH_NULL = 0x00
    PUSH_BOOL = 0x01
    PUSH_NUMBER = 0x02
    PUSH_STRING = 0x03
    POP = 0x04
    DUP = 0x05
    # variables
    LOAD_VAR = 0x10
    STORE_VAR = 0x11
    STORE_IMMUTABLE = 0x12
    # arithmetic
    ADD = 0x20
    SUB = 0x21
    MUL = 0x22
    DIV = 0x23
    POWER = 0x24
    ROOT = 0x25
    # comparison
    EQUAL = 0x30
    NOT_EQUAL = 0x31
    LESS_THAN = 0x32
    GREATER_THAN = 0x33
    APPROX = 0x34
    INDEX = 0x35
    # logic
    AND = 0x40
    OR = 0x41
    NOT = 0x42
    BOOL = 0x43
    # io
    INPUT = 0x50
    OUTPUT = 0x51
    HTTP_GET = 0x52
    # data
    JSON_PARSE = 0x60
    PERSIST = 0x61
    QUERY = 0x62
    # control flow
    JUMP = 0x70
    JUMP_IF_FALSE = 0x71
    JUMP_IF_TRUE = 0x72
    DEFINE_FUNC = 0x73
    RETURN = 0x74
    HALT = 0x75
    TRY_START = 0x76
    TRY_END = 0x77
    # collections
    MAKE_ARRAY = 0x80
    MAKE_OBJECT = 0x81
    ARRAY_APPEND = 0x82
    # iteration
    LOOP_ENTER = 0x90
    LOOP_TICK = 0x91
    LOOP_EXIT = 0x92
    ITER_START = 0x93
    ITER_NEXT = 0x94
    SUM = 0x95
    RETRY_ENTER = 0x96
    RETRY_CHECK = 0x97
    RETRY_EXIT = 0x98
    # strings and crypto
    SPLIT = 0xA0
    JOIN = 0xA1
    REGEX = 0xA2
    HASH = 0xA3
    ENCRYPT = 0xA4
    DECRYPT = 0xA5
    SIGN = 0xA6
    VERIFY = 0xA7
    # async
    ASYNC = 0xB0
    AWAIT = 0xB1
    END_TASK = 0xB2
    # time and random
    DATETIME = 0xC0
    RANDOM = 0xC1
    # system
    LOG = 0xD0
    DEBUG = 0xD1
    ENV_VAR = 0xD2
    # testing
    TEST_START = 0xE0
    ASSERT = 0xE1
    TEST_END = 0xE2
    # files
    FILE_READ = 0xF0
    FILE_WRITE = 0xF1
    FILE_APPEND = 0xF2
    # end of program
    END = 0xFF

_U8 = '>B'
_U32 = '>I'
_F64 = '>d'
_U32_PAIR = '>II'

OPERAND_FORMATS: Dict[Opcode, str] = {
    Opcode.PUSH_BOOL: _U8,
    Opcode.PUSH_NUMBER: _F64,
    Opcode.PUSH_STRING: _U32,
    Opcode.LOAD_VAR: _U32,
    Opcode.STORE_VAR: _U32,
    Opcode.STORE_IMMUTABLE: _U32,
    Opcode.ROOT: _U8,
    Opcode.JUMP: _U32,
    Opcode.JUMP_IF_FALSE: _U32,
    Opcode.JUMP_IF_TRUE: _U32,
    Opcode.DEFINE_FUNC: _U32_PAIR,
    Opcode.TRY_START: _U32,
    Opcode.MAKE_ARRAY: _U32,
    Opcode.MAKE_OBJECT: _U32,
    Opcode.ITER_NEXT: _U32,
    Opcode.RETRY_ENTER: _U8,
    Opcode.RETRY_CHECK: _U32,
    Opcode.ASYNC: _U32,
    Opcode.TEST_START: _U32,
    Opcode.TEST_END: _U32,
}

# operands that are code offsets: opcode -> position within the operand tuple
JUMP_OPERANDS: Dict[Opcode, int] = {
    Opcode.JUMP: 0,
    Opcode.JUMP_IF_FALSE: 0,
    Opcode.JUMP_IF_TRUE: 0,
    Opcode.DEFINE_FUNC: 1,
    Opcode.TRY_START: 0,
    Opcode.ITER_NEXT: 0,
    Opcode.RETRY_CHECK: 0,
    Opcode.ASYNC: 0,
}

# operands that index the constant pool
CONSTANT_OPERANDS: Dict[Opcode, int] = {
    Opcode.PUSH_STRING: 0,
    Opcode.LOAD_VAR: 0,
    Opcode.STORE_VAR: 0,
    Opcode.STORE_IMMUTABLE: 0,
    Opcode.DEFINE_FUNC: 0,
    Opcode.TEST_START: 0,
    Opcode.TEST_END: 0,
}

CATEGORIES: Dict[str, Tuple[int, int]] = {
    'stack': (0x00, 0x0F),
    'variables': (0x10, 0x1F),
    'arithmetic': (0x20, 0x2F),
    'comparison': (0x30, 0x3F),
    'logic': (0x40, 0x4F),
    'io': (0x50, 0x5F),
    'data': (0x60, 0x6F),
    'control': (0x70, 0x7F),
    'collections': (0x80, 0x8F),
    'iteration': (0x90, 0x9F),
    'advanced': (0xA0, 0xAF),
    'async': (0xB0, 0xBF),
    'time': (0xC0, 0xCF),
    'system': (0xD0, 0xDF),
    'testing': (0xE0, 0xEE),
    'file': (0xF0, 0xFE),
    'end': (0xFF, 0xFF),
}

_OPCODES: Dict[int, Opcode] = {int(opcode): opcode for opcode in Opcode}

def category(opcode: Opcode) -> str:
    for name, (low, high) in CATEGORIES.items():
        if low <= opcode <= high:
            return name
    raise ValueError(f"{opcode!r} has no category")

def operand_width(opcode: Opcode) -> int:
    fmt = OPERAND_FORMATS.get(opcode)
    return struct.calcsize(fmt) if fmt else 0

def encode_instruction(opcode: Opcode, *operands) -> bytes:
    fmt = OPERAND_FORMATS.get(opcode)
    if fmt is None:
        if operands:
            raise ValueError(f"{opcode.name} takes no operand")
        return bytes([opcode])
    return bytes([opcode]) + struct.pack(fmt, *operands)

def decode_instruction(code: bytes, offset: int) -> Tuple[Opcode, Tuple, int]:
    """Returns (opcode, operands, size) for the instruction at offset"""
    byte = code[offset]
    opcode = _OPCODES.get(byte)
    if opcode is None:
        raise BytecodeError(BytecodeErrorKind.UNKNOWN_OPCODE, f"Unknown opcode 0x{byte:02X}", offset)
    fmt = OPERAND_FORMATS.get(opcode)
    if fmt is None:
        return opcode, (), 1
    width = struct.calcsize(fmt)
    if offset + 1 + width > len(code):
        raise BytecodeError(BytecodeErrorKind.TRUNCATED,
                            f"{opcode.name} operand runs past the end of the code", offset)
    return opcode, struct.unpack_from(fmt, code, offset + 1), 1 + width

@dataclass
class BytecodeProgram:
    constants: List[str] = field(default_factory=list)
    code: bytes = b''

    def constant(self, index: int) -> str:
        if not 0 <= index < len(self.constants):
            raise BytecodeError(BytecodeErrorKind.BAD_CONSTANT_INDEX,
                                f"Constant {index} outside pool of {len(self.constants)}")
        return self.constants[index]

@dataclass
class Instruction:
    offset: int
    opcode: Opcode
    operands: Tuple

    def format(self, program: BytecodeProgram) -> str:
        text = f"{self.offset:04d}  {self.opcode.name:<16}"
        parts = [str(operand) for operand in self.operands]
        if self.opcode in CONSTANT_OPERANDS:
            position = CONSTANT_OPERANDS[self.opcode]
            parts[position] += f" ({program.constant(self.operands[position])!r})"
        return (text + ' '.join(parts)).rstrip()

def disassemble(program: BytecodeProgram) -> List[Instruction]:
    instructions = []
    offset = 0
    while offset < len(program.code):
        opcode, operands, size = decode_instruction(program.code, offset)
        instructions.append(Instruction(offset, opcode, operands))
        offset += size
    return instructions

# Container

def encode(program: BytecodeProgram) -> bytes:
    out = bytearray(MAGIC)
    out.append(VERSION)
    out += struct.pack(_U32, len(program.constants))
    for constant in program.constants:
        data = constant.encode('utf-8')
        out += struct.pack(_U32, len(data))
        out += data
    out += struct.pack(_U32, len(program.code))
    out += program.code
    return bytes(out)

class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.position = 0

    def take(self, count: int, what: str) -> bytes:
        if self.position + count > len(self.data):
            raise BytecodeError(BytecodeErrorKind.TRUNCATED,
                                f"Container ends inside {what} at byte {self.position}")
        chunk = self.data[self.position:self.position + count]
        self.position += count
        return chunk

    def u32(self, what: str) -> int:
        return struct.unpack(_U32, self.take(4, what))[0]

def decode(data: bytes) -> BytecodeProgram:
    reader = _Reader(bytes(data))
    magic = reader.take(len(MAGIC), 'magic tag') if len(data) >= len(MAGIC) else bytes(data)
    if magic != MAGIC:
        raise BytecodeError(BytecodeErrorKind.BAD_MAGIC, f"Bad magic tag {magic!r}")
    version = reader.take(1, 'version')[0]
    if version != VERSION:
        raise BytecodeError(BytecodeErrorKind.UNSUPPORTED_VERSION,
                            f"Unsupported bytecode version {version} (expected {VERSION})")

    constants = []
    for number in range(reader.u32('constant count')):
        raw = reader.take(reader.u32(f'constant {number} length'), f'constant {number}')
        try:
            constants.append(raw.decode('utf-8'))
        except UnicodeDecodeError as exc:
            raise BytecodeError(BytecodeErrorKind.INVALID_CONSTANT,
                                f"Constant {number} is not valid UTF-8") from exc

    code = reader.take(reader.u32('code length'), 'code')
    if reader.position != len(reader.data):
        raise BytecodeError(BytecodeErrorKind.TRAILING_DATA,
                            f"{len(reader.data) - reader.position} bytes after the code section")
    return BytecodeProgram(constants, code)
