#!/usr/bin/env python3
"""
Aether Bytecode Container Tests
"""

import struct
import unittest
import sys
from pathlib import Path

# Add src directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from aether.bytecode import (CATEGORIES, MAGIC, VERSION, BytecodeProgram, Opcode, category, decode,
                             decode_instruction, disassemble, encode, encode_instruction,
                             operand_width)
from aether.errors import BytecodeError, BytecodeErrorKind

def u32(value):
    return struct.pack('>I', value)

def every_category_program():
    code = b''.join([
        encode_instruction(Opcode.PUSH_STRING, 1),
        encode_instruction(Opcode.STORE_VAR, 0),
        encode_instruction(Opcode.PUSH_NUMBER, 2.5),
        encode_instruction(Opcode.ADD),
        encode_instruction(Opcode.EQUAL),
        encode_instruction(Opcode.NOT),
        encode_instruction(Opcode.OUTPUT),
        encode_instruction(Opcode.JSON_PARSE),
        encode_instruction(Opcode.JUMP, 0),
        encode_instruction(Opcode.MAKE_ARRAY, 2),
        encode_instruction(Opcode.SUM),
        encode_instruction(Opcode.HASH),
        encode_instruction(Opcode.AWAIT),
        encode_instruction(Opcode.DATETIME),
        encode_instruction(Opcode.LOG),
        encode_instruction(Opcode.ASSERT),
        encode_instruction(Opcode.FILE_READ),
        encode_instruction(Opcode.END),
    ])
    return BytecodeProgram(['greeting', 'héllo ⇢ \U0001F30D'], code)

class TestRoundTrip(unittest.TestCase):

    def test_empty_program(self):
        program = BytecodeProgram()
        data = encode(program)
        self.assertEqual(data, MAGIC + bytes([VERSION]) + u32(0) + u32(0))
        self.assertEqual(decode(data), program)

    def test_single_instruction(self):
        program = BytecodeProgram([], encode_instruction(Opcode.PUSH_NUMBER, 2.5))
        decoded = decode(encode(program))
        self.assertEqual(decoded, program)
        self.assertEqual([i.operands for i in disassemble(decoded)], [(2.5,)])

    def test_every_category(self):
        program = every_category_program()
        decoded = decode(encode(program))
        self.assertEqual(decoded, program)

        opcodes = [instruction.opcode for instruction in disassemble(decoded)]
        self.assertEqual({category(opcode) for opcode in opcodes}, set(CATEGORIES))
        self.assertEqual(decoded.constant(1), 'héllo ⇢ \U0001F30D')

    def test_layout(self):
        data = encode(BytecodeProgram(['hi'], bytes([Opcode.END])))
        self.assertEqual(data, b'AEB\x00' + b'\x01' + u32(1) + u32(2) + b'hi' + u32(1) + b'\xff')

    def test_constant_length_counts_bytes(self):
        data = encode(BytecodeProgram(['é'], b''))
        self.assertEqual(data[9:13], u32(2))

class TestRejections(unittest.TestCase):

    def assertRejected(self, data, kind):
        with self.assertRaises(BytecodeError) as ctx:
            decode(data)
        self.assertEqual(ctx.exception.kind, kind)
        return ctx.exception

    def test_bad_magic(self):
        self.assertRejected(b'XYZ\x00\x01' + u32(0) + u32(0), BytecodeErrorKind.BAD_MAGIC)
        self.assertRejected(b'AE', BytecodeErrorKind.BAD_MAGIC)
        self.assertRejected(b'', BytecodeErrorKind.BAD_MAGIC)

    def test_unsupported_version(self):
        self.assertRejected(MAGIC + b'\x02' + u32(0) + u32(0), BytecodeErrorKind.UNSUPPORTED_VERSION)

    def test_truncated(self):
        data = encode(every_category_program())
        for cut in (len(MAGIC), len(MAGIC) + 3, len(MAGIC) + 9, len(data) - 1):
            self.assertRejected(data[:cut], BytecodeErrorKind.TRUNCATED)

    def test_invalid_constant(self):
        data = MAGIC + bytes([VERSION]) + u32(1) + u32(1) + b'\xff' + u32(0)
        self.assertRejected(data, BytecodeErrorKind.INVALID_CONSTANT)

    def test_trailing_data(self):
        data = encode(BytecodeProgram([], bytes([Opcode.END]))) + b'\x00'
        self.assertRejected(data, BytecodeErrorKind.TRAILING_DATA)

class TestInstructions(unittest.TestCase):

    def test_decode_instruction(self):
        code = encode_instruction(Opcode.DEFINE_FUNC, 3, 40)
        self.assertEqual(decode_instruction(code, 0), (Opcode.DEFINE_FUNC, (3, 40), 9))

    def test_unknown_opcode(self):
        with self.assertRaises(BytecodeError) as ctx:
            decode_instruction(bytes([Opcode.END, 0x0F]), 1)
        self.assertEqual(ctx.exception.kind, BytecodeErrorKind.UNKNOWN_OPCODE)
        self.assertEqual(ctx.exception.offset, 1)

    def test_truncated_operand(self):
        with self.assertRaises(BytecodeError) as ctx:
            decode_instruction(bytes([Opcode.PUSH_NUMBER, 0, 0]), 0)
        self.assertEqual(ctx.exception.kind, BytecodeErrorKind.TRUNCATED)

    def test_operand_widths(self):
        self.assertEqual(operand_width(Opcode.ADD), 0)
        self.assertEqual(operand_width(Opcode.ROOT), 1)
        self.assertEqual(operand_width(Opcode.JUMP), 4)
        self.assertEqual(operand_width(Opcode.PUSH_NUMBER), 8)
        self.assertEqual(operand_width(Opcode.DEFINE_FUNC), 8)

    def test_operand_mismatch(self):
        with self.assertRaises(ValueError):
            encode_instruction(Opcode.ADD, 1)

    def test_format(self):
        code = (encode_instruction(Opcode.LOAD_VAR, 0)
                + encode_instruction(Opcode.PUSH_NUMBER, 2.0)
                + encode_instruction(Opcode.END))
        program = BytecodeProgram(['x'], code)
        lines = [instruction.format(program) for instruction in disassemble(program)]
        self.assertEqual(lines, [
            "0000  LOAD_VAR        0 ('x')",
            "0005  PUSH_NUMBER     2.0",
            "0014  END",
        ])

    def test_bad_constant_index(self):
        with self.assertRaises(BytecodeError) as ctx:
            BytecodeProgram(['x']).constant(1)
        self.assertEqual(ctx.exception.kind, BytecodeErrorKind.BAD_CONSTANT_INDEX)

class TestOpcodeTable(unittest.TestCase):

    def test_opcode_values_are_unique(self):
        values = [int(opcode) for opcode in Opcode.__members__.values()]
        self.assertEqual(len(values), len(set(values)))

    def test_every_opcode_has_a_category(self):
        for opcode in Opcode:
            self.assertIn(category(opcode), CATEGORIES)

    def test_category_ranges(self):
        self.assertEqual(category(Opcode.PUSH_NULL), 'stack')
        self.assertEqual(category(Opcode.FILE_APPEND), 'file')
        self.assertEqual(category(Opcode.END), 'end')

if __name__ == '__main__':
    unittest.main()
