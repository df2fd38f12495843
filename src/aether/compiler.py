"""
Aether Compiler
Lowers the AST to bytecode. Jumps are emitted against labels and
backpatched once the whole program has been laid out.
"""

import logging
import struct
from typing import Dict, List, Optional, Tuple

from .ast_nodes import *
from .bytecode import (BytecodeProgram, Opcode, decode_instruction, encode_instruction)
from .errors import BytecodeError, BytecodeErrorKind
from .interpreter import LAMBDA_BINDING
from .symbols import Op

logger = logging.getLogger(__name__)

BUILTIN_OPCODES: Dict[Op, Opcode] = {
    Op.SPLIT: Opcode.SPLIT,
    Op.JOIN: Opcode.JOIN,
    Op.REGEX: Opcode.REGEX,
    Op.HASH: Opcode.HASH,
    Op.ENCRYPT: Opcode.ENCRYPT,
    Op.DECRYPT: Opcode.DECRYPT,
    Op.SIGN: Opcode.SIGN,
    Op.VERIFY: Opcode.VERIFY,
    Op.HTTP_GET: Opcode.HTTP_GET,
    Op.DATETIME: Opcode.DATETIME,
    Op.RANDOM: Opcode.RANDOM,
    Op.LOG: Opcode.LOG,
    Op.ENV: Opcode.ENV_VAR,
    Op.FILE_READ: Opcode.FILE_READ,
    Op.FILE_WRITE: Opcode.FILE_WRITE,
    Op.FILE_APPEND: Opcode.FILE_APPEND,
}

_ARITHMETIC = {
    ADD: Opcode.ADD,
    SUB: Opcode.SUB,
    MUL: Opcode.MUL,
    DIV: Opcode.DIV,
    POWER: Opcode.POWER,
}

_COMPARE = {
    EQUAL: Opcode.EQUAL,
    NOT_EQUAL: Opcode.NOT_EQUAL,
    LESS_THAN: Opcode.LESS_THAN,
    GREATER_THAN: Opcode.GREATER_THAN,
    APPROX: Opcode.APPROX,
}

# single-operand nodes that lower to `operand; OPCODE`
_UNARY = {
    Output: Opcode.OUTPUT,
    Persist: Opcode.PERSIST,
    Query: Opcode.QUERY,
    JsonParse: Opcode.JSON_PARSE,
    Await: Opcode.AWAIT,
    Assert: Opcode.ASSERT,
    Not: Opcode.NOT,
}

class Compiler:
    def __init__(self):
        self.code = bytearray()
        self.constants: List[str] = []
        self._constant_index: Dict[str, int] = {}
        self._labels: List[Optional[int]] = []
        self._patches: List[Tuple[int, int]] = []

    def compile(self, node: ASTNode) -> BytecodeProgram:
        allow_deep_nesting()
        try:
            self.visit(node)
        except RecursionError:
            raise BytecodeError(BytecodeErrorKind.NESTING_LIMIT,
                                "Program is nested too deeply to compile", len(self.code)) from None
        self.emit(Opcode.END)
        program = BytecodeProgram(list(self.constants), self.finish())
        logger.debug("compiled %d bytes, %d constants", len(program.code), len(program.constants))
        return program

    # Emission

    def constant(self, text: str) -> int:
        index = self._constant_index.get(text)
        if index is None:
            index = len(self.constants)
            self.constants.append(text)
            self._constant_index[text] = index
        return index

    def emit(self, opcode: Opcode, *operands) -> int:
        offset = len(self.code)
        self.code += encode_instruction(opcode, *operands)
        return offset

    def new_label(self) -> int:
        self._labels.append(None)
        return len(self._labels) - 1

    def mark(self, label: int):
        self._labels[label] = len(self.code)

    def emit_jump(self, opcode: Opcode, label: int, *leading) -> int:
        """Emit a jump-style instruction whose last operand is `label`"""
        offset = self.emit(opcode, *leading, 0)
        self._patches.append((len(self.code) - 4, label))
        return offset

    def finish(self) -> bytes:
        starts = set()
        offset = 0
        while offset < len(self.code):
            starts.add(offset)
            offset += decode_instruction(self.code, offset)[2]

        for position, label in self._patches:
            target = self._labels[label]
            if target is None:
                raise BytecodeError(BytecodeErrorKind.UNRESOLVED_JUMP,
                                    f"Label {label} was never placed", position - 1)
            if target not in starts:
                raise BytecodeError(BytecodeErrorKind.UNRESOLVED_JUMP,
                                    f"Label {label} resolves to {target}, not an instruction start",
                                    position - 1)
            struct.pack_into('>I', self.code, position, target)
        return bytes(self.code)

    # Visitors

    def visit(self, node: ASTNode):
        method_name = f'visit_{node.__class__.__name__}'
        visitor = getattr(self, method_name, self.generic_visit)
        visitor(node)

    def generic_visit(self, node: ASTNode):
        raise TypeError(f"No visit_{node.__class__.__name__} method")

    def visit_Literal(self, node: Literal):
        value = node.value
        if value is None:
            self.emit(Opcode.PUSH_NULL)
        elif isinstance(value, bool):
            self.emit(Opcode.PUSH_BOOL, int(value))
        elif isinstance(value, (int, float)):
            self.emit(Opcode.PUSH_NUMBER, float(value))
        elif isinstance(value, str):
            self.emit(Opcode.PUSH_STRING, self.constant(value))
        else:
            raise TypeError(f"Cannot compile literal {value!r}")

    def visit_Variable(self, node: Variable):
        self.emit(Opcode.LOAD_VAR, self.constant(node.name))

    def visit_Empty(self, node: Empty):
        # the piped value is already on the stack
        pass

    def visit_ArrayLiteral(self, node: ArrayLiteral):
        for element in node.elements:
            self.visit(element)
        self.emit(Opcode.MAKE_ARRAY, len(node.elements))

    def visit_ObjectLiteral(self, node: ObjectLiteral):
        for key, value in node.pairs:
            self.emit(Opcode.PUSH_STRING, self.constant(key))
            self.visit(value)
        self.emit(Opcode.MAKE_OBJECT, len(node.pairs))

    def visit_Index(self, node: Index):
        self.visit(node.target)
        self.visit(node.key)
        self.emit(Opcode.INDEX)

    # Functions

    def visit_Function(self, node: Function):
        body = self.new_label()
        after = self.new_label()
        self.emit_jump(Opcode.JUMP, after)
        self.mark(body)
        self.visit(node.body)
        self.emit(Opcode.RETURN)
        self.mark(after)
        self.emit_jump(Opcode.DEFINE_FUNC, body, self.constant(node.name))
        self.emit(Opcode.PUSH_NULL)

    def visit_Lambda(self, node: Lambda):
        self.emit(Opcode.STORE_VAR, self.constant(LAMBDA_BINDING))
        self.visit(node.body)

    # Composition

    def visit_Sequence(self, node: Sequence):
        if not node.statements:
            self.emit(Opcode.PUSH_NULL)
            return
        exit_label = self.new_label()
        last = len(node.statements) - 1
        for position, statement in enumerate(node.statements):
            if isinstance(statement, Guard):
                self.guard(statement, exit_label)
            else:
                self.visit(statement)
            if position != last:
                self.emit(Opcode.POP)
        self.mark(exit_label)

    def visit_Pipe(self, node: Pipe):
        self.visit(node.source)
        if not takes_carry(node.operation):
            self.emit(Opcode.POP)
        self.visit(node.operation)

    def visit_PipeInto(self, node: PipeInto):
        self.visit(node.source)
        self.emit(Opcode.DUP)
        store = Opcode.STORE_IMMUTABLE if node.immutable else Opcode.STORE_VAR
        self.emit(store, self.constant(node.name))

    def guard(self, node: Guard, exit_label: Optional[int] = None):
        passed = self.new_label()
        self.visit(node.value)
        self.emit(Opcode.DUP)
        self.emit_jump(Opcode.JUMP_IF_TRUE, passed)
        self.emit(Opcode.POP)
        self.visit(node.alternative)
        if exit_label is not None:
            self.emit_jump(Opcode.JUMP, exit_label)
        self.mark(passed)

    def visit_Guard(self, node: Guard):
        self.guard(node)

    def visit_Halt(self, node: Halt):
        self.visit(node.code)
        self.emit(Opcode.HALT)

    # Control flow

    def visit_If(self, node: If):
        end = self.new_label()
        for condition, branch in [(node.condition, node.then_branch)] + list(node.elifs):
            following = self.new_label()
            self.visit(condition)
            self.emit_jump(Opcode.JUMP_IF_FALSE, following)
            self.visit(branch)
            self.emit_jump(Opcode.JUMP, end)
            self.mark(following)
        if node.else_branch is not None:
            self.visit(node.else_branch)
        else:
            self.emit(Opcode.PUSH_NULL)
        self.mark(end)

    def visit_Loop(self, node: Loop):
        top = self.new_label()
        done = self.new_label()
        self.emit(Opcode.LOOP_ENTER)
        self.mark(top)
        self.emit(Opcode.LOOP_TICK)
        if node.condition is not None:
            self.visit(node.condition)
            self.emit_jump(Opcode.JUMP_IF_FALSE, done)
        self.visit(node.body)
        self.emit(Opcode.POP)
        self.emit_jump(Opcode.JUMP, top)
        self.mark(done)
        self.emit(Opcode.LOOP_EXIT)
        self.emit(Opcode.PUSH_NULL)

    def visit_ForEach(self, node: ForEach):
        following = self.new_label()
        done = self.new_label()
        self.visit(node.collection)
        self.emit(Opcode.ITER_START)
        self.emit(Opcode.MAKE_ARRAY, 0)
        self.mark(following)
        self.emit_jump(Opcode.ITER_NEXT, done)
        self.emit(Opcode.STORE_VAR, self.constant(node.binding))
        self.visit(node.body)
        self.emit(Opcode.ARRAY_APPEND)
        self.emit_jump(Opcode.JUMP, following)
        self.mark(done)

    def visit_Filter(self, node: Filter):
        following = self.new_label()
        rejected = self.new_label()
        done = self.new_label()
        self.visit(node.collection)
        self.emit(Opcode.ITER_START)
        self.emit(Opcode.MAKE_ARRAY, 0)
        self.mark(following)
        self.emit_jump(Opcode.ITER_NEXT, done)
        if takes_carry(node.predicate):
            self.emit(Opcode.DUP)
        self.visit(node.predicate)
        self.emit_jump(Opcode.JUMP_IF_FALSE, rejected)
        self.emit(Opcode.ARRAY_APPEND)
        self.emit_jump(Opcode.JUMP, following)
        self.mark(rejected)
        self.emit(Opcode.POP)
        self.emit_jump(Opcode.JUMP, following)
        self.mark(done)

    def visit_TryRescue(self, node: TryRescue):
        handler = self.new_label()
        end = self.new_label()
        self.emit_jump(Opcode.TRY_START, handler)
        self.visit(node.body)
        self.emit(Opcode.TRY_END)
        self.emit_jump(Opcode.JUMP, end)
        self.mark(handler)
        if node.rescue is not None:
            self.visit(node.rescue)
        else:
            self.emit(Opcode.PUSH_NULL)
        self.mark(end)

    def visit_Retry(self, node: Retry):
        attempt = self.new_label()
        handler = self.new_label()
        end = self.new_label()
        self.emit(Opcode.RETRY_ENTER, node.count)
        self.mark(attempt)
        self.emit_jump(Opcode.TRY_START, handler)
        self.visit(node.body)
        self.emit(Opcode.TRY_END)
        self.emit_jump(Opcode.JUMP, end)
        self.mark(handler)
        self.emit_jump(Opcode.RETRY_CHECK, attempt)
        self.mark(end)
        self.emit(Opcode.RETRY_EXIT)

    # Operators

    def visit_BinaryLogic(self, node: BinaryLogic):
        self.visit(node.left)
        if isinstance(node.right, Literal):
            self.visit(node.right)
            self.emit(Opcode.AND if node.kind == AND else Opcode.OR)
            return
        short = self.new_label()
        end = self.new_label()
        jump = Opcode.JUMP_IF_FALSE if node.kind == AND else Opcode.JUMP_IF_TRUE
        self.emit_jump(jump, short)
        self.visit(node.right)
        self.emit(Opcode.BOOL)
        self.emit_jump(Opcode.JUMP, end)
        self.mark(short)
        self.emit(Opcode.PUSH_BOOL, 0 if node.kind == AND else 1)
        self.mark(end)

    def visit_Compare(self, node: Compare):
        self.visit(node.left)
        self.visit(node.right)
        self.emit(_COMPARE[node.kind])

    def visit_Arithmetic(self, node: Arithmetic):
        if node.kind == ROOT:
            for operand in node.operands:
                self.visit(operand)
            self.emit(Opcode.ROOT, len(node.operands))
            return
        opcode = _ARITHMETIC[node.kind]
        self.visit(node.operands[0])
        for operand in node.operands[1:]:
            self.visit(operand)
            self.emit(opcode)

    # Capabilities

    def _unary(self, node: ASTNode):
        self.visit(node.operand)
        self.emit(_UNARY[type(node)])

    visit_Output = visit_Persist = visit_Query = visit_JsonParse = _unary
    visit_Await = visit_Assert = visit_Not = _unary

    def visit_Reduce(self, node: Reduce):
        self.visit(node.collection)
        self.emit(Opcode.SUM)

    def visit_Input(self, node: Input):
        self.emit(Opcode.INPUT)
        if node.key is not None:
            self.emit(Opcode.PUSH_STRING, self.constant(node.key))
            self.emit(Opcode.INDEX)

    def visit_Async(self, node: Async):
        end = self.new_label()
        self.emit_jump(Opcode.ASYNC, end)
        self.visit(node.body)
        self.emit(Opcode.END_TASK)
        self.mark(end)

    def visit_Builtin(self, node: Builtin):
        for operand in node.operands:
            self.visit(operand)
        self.emit(BUILTIN_OPCODES[node.op])

    def visit_Debug(self, node: Debug):
        self.emit(Opcode.DEBUG)

    def visit_Test(self, node: Test):
        name = self.constant(node.name)
        self.emit(Opcode.TEST_START, name)
        self.visit(node.body)
        self.emit(Opcode.TEST_END, name)

def compile_ast(node: ASTNode) -> BytecodeProgram:
    return Compiler().compile(node)
