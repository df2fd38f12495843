"""
Aether VM
Stack machine that executes a BytecodeProgram.

Each opcode has an ``op_<name>`` handler taking the execution state and
the decoded operands. Handlers may raise AetherRuntimeError; the dispatch
loop attaches the failing offset and, when a TRY frame is active and the
error is recoverable, unwinds to the frame's handler.
"""

import collections
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, NamedTuple, Optional

from .bytecode import BytecodeProgram, Opcode, decode_instruction
from .capabilities import Capabilities, DefaultCapabilities
from .compiler import BUILTIN_OPCODES
from .environment import Environment
from .errors import (AetherRuntimeError, BytecodeError, BytecodeErrorKind, HaltSignal,
                     IterationLimitExceeded, RuntimeErrorKind)
from .interpreter import DEFAULT_MAX_ITERATIONS, MAX_CALL_DEPTH
from .operations import (arithmetic, call_builtin, check_assertion, compare, index, iterate,
                         logic, make_object, parse_json, require_task, root, total)
from .parser import BUILTIN_ARITY
from .values import from_python, is_truthy, represent

logger = logging.getLogger(__name__)

_BUILTINS = {opcode: op for op, opcode in BUILTIN_OPCODES.items()}

_STOP = (Opcode.END, Opcode.END_TASK)

_DONE = object()

class HandlerFrame(NamedTuple):
    """Stack depths recorded by TRY_START, restored when an error is rescued"""
    address: int
    stack: int
    calls: int
    iterators: int
    loops: int
    retries: int

@dataclass
class ExecutionState:
    program: BytecodeProgram
    pc: int = 0
    offset: int = 0
    stack: List[Any] = field(default_factory=list)
    calls: List[int] = field(default_factory=list)
    iterators: List[Iterator] = field(default_factory=list)
    loops: List[int] = field(default_factory=list)
    retries: List[int] = field(default_factory=list)
    handlers: List[HandlerFrame] = field(default_factory=list)
    last_error: Optional[AetherRuntimeError] = None

class VM:
    def __init__(self,
                 capabilities: Optional[Capabilities] = None,
                 max_iterations: int = DEFAULT_MAX_ITERATIONS,
                 trace: bool = False,
                 profile: bool = False,
                 environment: Optional[Environment] = None):
        self.capabilities = capabilities or DefaultCapabilities()
        self.max_iterations = max_iterations
        self.trace = trace
        self.profile = profile
        self.env = environment if environment is not None else Environment()
        self.functions: Dict[str, int] = {}
        self.profile_counts = collections.Counter()
        self.steps = 0
        self._handlers = {}
        for opcode in Opcode:
            if opcode in _STOP:
                continue
            if opcode in _BUILTINS:
                self._handlers[opcode] = functools.partial(self._call_builtin, _BUILTINS[opcode])
            else:
                self._handlers[opcode] = getattr(self, f'op_{opcode.name.lower()}')

    def run(self, program: BytecodeProgram) -> Any:
        # function addresses belong to one program
        self.functions = {}
        self.steps = 0
        return self._execute(ExecutionState(program))

    def _execute(self, state: ExecutionState) -> Any:
        code = state.program.code
        while state.pc < len(code):
            offset = state.offset = state.pc
            opcode, operands, size = decode_instruction(code, offset)
            self.steps += 1
            if self.profile:
                self.profile_counts[opcode.name] += 1
            if self.trace:
                logger.debug("%04d %-16s %-12s stack=[%s]", offset, opcode.name,
                             ' '.join(str(operand) for operand in operands),
                             ', '.join(represent(value) for value in state.stack))
            if opcode in _STOP:
                break
            state.pc = offset + size
            try:
                self._handlers[opcode](state, operands)
            except AetherRuntimeError as error:
                if error.offset is None:
                    error.offset = offset
                if not error.recoverable or not state.handlers:
                    raise
                self._recover(state, error)
            except BytecodeError as error:
                if error.offset is None:
                    error.offset = offset
                raise
        return state.stack[-1] if state.stack else None

    def _recover(self, state: ExecutionState, error: AetherRuntimeError):
        frame = state.handlers.pop()
        logger.debug("rescued %s, resuming at %d", error, frame.address)
        del state.stack[frame.stack:]
        del state.calls[frame.calls:]
        del state.iterators[frame.iterators:]
        del state.loops[frame.loops:]
        del state.retries[frame.retries:]
        state.last_error = error
        self._jump(state, frame.address)

    # Helpers

    def _pop(self, state: ExecutionState) -> Any:
        if not state.stack:
            raise BytecodeError(BytecodeErrorKind.STACK_UNDERFLOW, "Pop from an empty stack", state.offset)
        return state.stack.pop()

    def _pop_many(self, state: ExecutionState, count: int) -> List[Any]:
        if count > len(state.stack):
            raise BytecodeError(BytecodeErrorKind.STACK_UNDERFLOW,
                                f"Need {count} values, stack holds {len(state.stack)}", state.offset)
        if count == 0:
            return []
        values = state.stack[-count:]
        del state.stack[-count:]
        return values

    def _peek(self, state: ExecutionState) -> Any:
        if not state.stack:
            raise BytecodeError(BytecodeErrorKind.STACK_UNDERFLOW, "Peek at an empty stack", state.offset)
        return state.stack[-1]

    def _check_target(self, state: ExecutionState, target: int) -> int:
        if not 0 <= target < len(state.program.code):
            raise BytecodeError(BytecodeErrorKind.JUMP_OUT_OF_RANGE,
                                f"Jump to {target} outside code of {len(state.program.code)} bytes",
                                state.offset)
        return target

    def _jump(self, state: ExecutionState, target: int):
        state.pc = self._check_target(state, target)

    def _name(self, state: ExecutionState, operands) -> str:
        return state.program.constant(operands[0])

    def _call_builtin(self, op, state: ExecutionState, operands):
        args = self._pop_many(state, BUILTIN_ARITY[op][1])
        state.stack.append(call_builtin(op, args, self.capabilities))

    # Stack

    def op_push_null(self, state, operands):
        state.stack.append(None)

    def op_push_bool(self, state, operands):
        state.stack.append(bool(operands[0]))

    def op_push_number(self, state, operands):
        state.stack.append(operands[0])

    def op_push_string(self, state, operands):
        state.stack.append(self._name(state, operands))

    def op_pop(self, state, operands):
        self._pop(state)

    def op_dup(self, state, operands):
        state.stack.append(self._peek(state))

    # Variables and functions

    def op_load_var(self, state, operands):
        name = self._name(state, operands)
        if self.env.contains(name) or name not in self.functions:
            state.stack.append(self.env.get(name))
            return
        if len(state.calls) >= MAX_CALL_DEPTH:
            raise AetherRuntimeError(RuntimeErrorKind.RECURSION_LIMIT,
                                     f"Call depth exceeded {MAX_CALL_DEPTH} in '{name}'")
        logger.debug("calling %s", name)
        state.calls.append(state.pc)
        self._jump(state, self.functions[name])

    def op_store_var(self, state, operands):
        self.env.set(self._name(state, operands), self._pop(state))

    def op_store_immutable(self, state, operands):
        self.env.set(self._name(state, operands), self._pop(state), immutable=True)

    def op_define_func(self, state, operands):
        name = state.program.constant(operands[0])
        self.functions[name] = self._check_target(state, operands[1])
        logger.debug("defined function %s at %d", name, operands[1])

    def op_return(self, state, operands):
        if not state.calls:
            raise BytecodeError(BytecodeErrorKind.STACK_UNDERFLOW, "RETURN outside a function", state.offset)
        self._jump(state, state.calls.pop())

    # Arithmetic, comparison, logic

    def _binary(self, state, function, kind):
        right = self._pop(state)
        left = self._pop(state)
        state.stack.append(function(kind, left, right))

    def op_add(self, state, operands):
        self._binary(state, arithmetic, 'ADD')

    def op_sub(self, state, operands):
        self._binary(state, arithmetic, 'SUB')

    def op_mul(self, state, operands):
        self._binary(state, arithmetic, 'MUL')

    def op_div(self, state, operands):
        self._binary(state, arithmetic, 'DIV')

    def op_power(self, state, operands):
        self._binary(state, arithmetic, 'POWER')

    def op_root(self, state, operands):
        arity = operands[0]
        if arity == 1:
            state.stack.append(root(self._pop(state)))
        elif arity == 2:
            self._binary(state, arithmetic, 'ROOT')
        else:
            raise BytecodeError(BytecodeErrorKind.UNKNOWN_OPCODE,
                                f"ROOT takes 1 or 2 operands, not {arity}", state.offset)

    def op_equal(self, state, operands):
        self._binary(state, compare, 'EQUAL')

    def op_not_equal(self, state, operands):
        self._binary(state, compare, 'NOT_EQUAL')

    def op_less_than(self, state, operands):
        self._binary(state, compare, 'LESS_THAN')

    def op_greater_than(self, state, operands):
        self._binary(state, compare, 'GREATER_THAN')

    def op_approx(self, state, operands):
        self._binary(state, compare, 'APPROX')

    def op_index(self, state, operands):
        key = self._pop(state)
        state.stack.append(index(self._pop(state), key))

    def op_and(self, state, operands):
        self._binary(state, logic, 'AND')

    def op_or(self, state, operands):
        self._binary(state, logic, 'OR')

    def op_not(self, state, operands):
        state.stack.append(not is_truthy(self._pop(state)))

    def op_bool(self, state, operands):
        state.stack.append(is_truthy(self._pop(state)))

    # I/O and data

    def op_input(self, state, operands):
        state.stack.append(from_python(self.capabilities.read_input()))

    def op_output(self, state, operands):
        value = self._pop(state)
        self.capabilities.write_output(value)
        state.stack.append(value)

    def op_persist(self, state, operands):
        value = self._pop(state)
        self.capabilities.persist(value)
        state.stack.append(value)

    def op_query(self, state, operands):
        state.stack.append(from_python(self.capabilities.query(self._pop(state))))

    def op_json_parse(self, state, operands):
        state.stack.append(parse_json(self._pop(state)))

    # Control flow

    def op_jump(self, state, operands):
        self._jump(state, operands[0])

    def op_jump_if_false(self, state, operands):
        if not is_truthy(self._pop(state)):
            self._jump(state, operands[0])

    def op_jump_if_true(self, state, operands):
        if is_truthy(self._pop(state)):
            self._jump(state, operands[0])

    def op_halt(self, state, operands):
        raise HaltSignal(self._pop(state), state.offset)

    def op_try_start(self, state, operands):
        state.handlers.append(HandlerFrame(
            self._check_target(state, operands[0]),
            len(state.stack),
            len(state.calls),
            len(state.iterators),
            len(state.loops),
            len(state.retries),
        ))

    def op_try_end(self, state, operands):
        if not state.handlers:
            raise BytecodeError(BytecodeErrorKind.STACK_UNDERFLOW, "TRY_END without TRY_START", state.offset)
        state.handlers.pop()

    # Collections

    def op_make_array(self, state, operands):
        state.stack.append(self._pop_many(state, operands[0]))

    def op_make_object(self, state, operands):
        flat = self._pop_many(state, 2 * operands[0])
        state.stack.append(make_object(zip(flat[0::2], flat[1::2])))

    def op_array_append(self, state, operands):
        value = self._pop(state)
        target = self._peek(state)
        if not isinstance(target, list):
            raise AetherRuntimeError(RuntimeErrorKind.TYPE_MISMATCH, "ARRAY_APPEND needs an Array below the value")
        target.append(value)

    # Iteration

    def op_loop_enter(self, state, operands):
        state.loops.append(0)

    def op_loop_tick(self, state, operands):
        if not state.loops:
            raise BytecodeError(BytecodeErrorKind.STACK_UNDERFLOW, "LOOP_TICK outside a loop", state.offset)
        state.loops[-1] += 1
        if state.loops[-1] > self.max_iterations:
            raise IterationLimitExceeded(self.max_iterations)

    def op_loop_exit(self, state, operands):
        if not state.loops:
            raise BytecodeError(BytecodeErrorKind.STACK_UNDERFLOW, "LOOP_EXIT outside a loop", state.offset)
        state.loops.pop()

    def op_iter_start(self, state, operands):
        state.iterators.append(iter(iterate(self._pop(state))))

    def op_iter_next(self, state, operands):
        if not state.iterators:
            raise BytecodeError(BytecodeErrorKind.STACK_UNDERFLOW, "ITER_NEXT without ITER_START", state.offset)
        item = next(state.iterators[-1], _DONE)
        if item is _DONE:
            state.iterators.pop()
            self._jump(state, operands[0])
        else:
            state.stack.append(item)

    def op_sum(self, state, operands):
        state.stack.append(total(self._pop(state)))

    def op_retry_enter(self, state, operands):
        state.retries.append(operands[0])

    def op_retry_check(self, state, operands):
        if not state.retries or state.last_error is None:
            raise BytecodeError(BytecodeErrorKind.STACK_UNDERFLOW, "RETRY_CHECK without a failed attempt",
                                state.offset)
        state.retries[-1] -= 1
        if state.retries[-1] > 0:
            logger.debug("retrying, %d attempts left: %s", state.retries[-1], state.last_error)
            self._jump(state, operands[0])
            return
        state.retries.pop()
        raise state.last_error

    def op_retry_exit(self, state, operands):
        if not state.retries:
            raise BytecodeError(BytecodeErrorKind.STACK_UNDERFLOW, "RETRY_EXIT outside a retry", state.offset)
        state.retries.pop()

    # Async

    def op_async(self, state, operands):
        end = self._check_target(state, operands[0])
        task = ExecutionState(state.program, pc=state.pc)
        state.stack.append(self.capabilities.invoke_async(lambda: self._execute(task)))
        state.pc = end

    def op_await(self, state, operands):
        handle = require_task(self._pop(state))
        state.stack.append(from_python(self.capabilities.await_task(handle)))

    # System and testing

    def op_debug(self, state, operands):
        logger.debug("environment: %r functions: %s stack depth: %d",
                     self.env.snapshot(), sorted(self.functions), len(state.stack))
        state.stack.append(None)

    def op_test_start(self, state, operands):
        logger.info("test %s: running", self._name(state, operands))

    def op_test_end(self, state, operands):
        logger.info("test %s: passed", self._name(state, operands))

    def op_assert(self, state, operands):
        state.stack.append(check_assertion(self._pop(state)))

    def profile_report(self) -> List[str]:
        return [f"{name:<16} {count}" for name, count in self.profile_counts.most_common()]
