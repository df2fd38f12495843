"""
Aether Interpreter
Evaluates the Abstract Syntax Tree (AST) directly; the reference semantics
the bytecode VM is checked against.
"""

import logging
from typing import Any, Dict, List, Optional

from .ast_nodes import *
from .capabilities import Capabilities, DefaultCapabilities
from .environment import Environment
from .errors import AetherRuntimeError, HaltSignal, IterationLimitExceeded, RuntimeErrorKind
from .operations import (arithmetic, call_builtin, check_assertion, compare, index, iterate,
                         logic, make_object, parse_json, require_task, root, total)
from .values import from_python, is_truthy

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10_000
MAX_CALL_DEPTH = 64
LAMBDA_BINDING = 'it'

_NO_CARRY = object()

class Interpreter:
    def __init__(self,
                 capabilities: Optional[Capabilities] = None,
                 max_iterations: int = DEFAULT_MAX_ITERATIONS,
                 debug: bool = False,
                 environment: Optional[Environment] = None):
        self.capabilities = capabilities or DefaultCapabilities()
        self.max_iterations = max_iterations
        self.debug = debug
        self.env = environment if environment is not None else Environment()
        self.functions: Dict[str, Function] = {}
        self._carry: Any = _NO_CARRY
        self._depth = 0

    def evaluate(self, node: ASTNode) -> Any:
        allow_deep_nesting()
        try:
            if self.debug:
                logger.debug("evaluating:\n%s", pretty_print_ast(node))
            return self.visit(node)
        except RecursionError:
            raise AetherRuntimeError(RuntimeErrorKind.RECURSION_LIMIT,
                                     "Program is nested too deeply to evaluate") from None

    def visit(self, node: ASTNode) -> Any:
        method_name = f'visit_{node.__class__.__name__}'
        visitor = getattr(self, method_name, self.generic_visit)
        return visitor(node)

    def generic_visit(self, node: ASTNode):
        raise TypeError(f"No visit_{node.__class__.__name__} method")

    def _with_carry(self, value: Any, node: ASTNode) -> Any:
        previous = self._carry
        self._carry = value
        try:
            return self.visit(node)
        finally:
            self._carry = previous

    # Values and names

    def visit_Literal(self, node: Literal) -> Any:
        if isinstance(node.value, int) and not isinstance(node.value, bool):
            return float(node.value)
        return node.value

    def visit_Variable(self, node: Variable) -> Any:
        if self.env.contains(node.name):
            return self.env.get(node.name)
        function = self.functions.get(node.name)
        if function is None:
            return self.env.get(node.name)
        return self.call(function)

    def visit_Empty(self, node: Empty) -> Any:
        if self._carry is _NO_CARRY:
            raise AetherRuntimeError(RuntimeErrorKind.NULL_DEREFERENCE, "No piped value")
        return self._carry

    def visit_ArrayLiteral(self, node: ArrayLiteral) -> List[Any]:
        return [self.visit(element) for element in node.elements]

    def visit_ObjectLiteral(self, node: ObjectLiteral) -> Dict[str, Any]:
        return make_object((key, self.visit(value)) for key, value in node.pairs)

    def visit_Index(self, node: Index) -> Any:
        target = self.visit(node.target)
        return index(target, self.visit(node.key))

    # Functions

    def visit_Function(self, node: Function) -> Any:
        self.functions[node.name] = node
        logger.debug("defined function %s", node.name)
        return None

    def call(self, function: Function) -> Any:
        if self._depth >= MAX_CALL_DEPTH:
            raise AetherRuntimeError(RuntimeErrorKind.RECURSION_LIMIT,
                                     f"Call depth exceeded {MAX_CALL_DEPTH} in '{function.name}'")
        logger.debug("calling %s", function.name)
        self._depth += 1
        try:
            return self._with_carry(_NO_CARRY, function.body)
        finally:
            self._depth -= 1

    def visit_Lambda(self, node: Lambda) -> Any:
        self.env.set(LAMBDA_BINDING, self.visit_Empty(Empty()))
        return self.visit(node.body)

    # Composition

    def visit_Sequence(self, node: Sequence) -> Any:
        result = None
        for statement in node.statements:
            if isinstance(statement, Guard):
                result, passed = self.guard(statement)
                if not passed:
                    return result
            else:
                result = self.visit(statement)
        return result

    def visit_Pipe(self, node: Pipe) -> Any:
        value = self.visit(node.source)
        return self._with_carry(value, node.operation)

    def visit_PipeInto(self, node: PipeInto) -> Any:
        value = self.visit(node.source)
        self.env.set(node.name, value, immutable=node.immutable)
        return value

    def guard(self, node: Guard):
        """Returns (result, passed)"""
        value = self.visit(node.value)
        if is_truthy(value):
            return value, True
        return self.visit(node.alternative), False

    def visit_Guard(self, node: Guard) -> Any:
        return self.guard(node)[0]

    def visit_Halt(self, node: Halt) -> Any:
        raise HaltSignal(self.visit(node.code))

    # Control flow

    def visit_If(self, node: If) -> Any:
        for condition, branch in [(node.condition, node.then_branch)] + list(node.elifs):
            if is_truthy(self.visit(condition)):
                return self.visit(branch)
        if node.else_branch is not None:
            return self.visit(node.else_branch)
        return None

    def visit_Loop(self, node: Loop) -> Any:
        iterations = 0
        while True:
            iterations += 1
            if iterations > self.max_iterations:
                raise IterationLimitExceeded(self.max_iterations)
            if node.condition is not None and not is_truthy(self.visit(node.condition)):
                return None
            self.visit(node.body)

    def visit_ForEach(self, node: ForEach) -> List[Any]:
        results = []
        for item in iterate(self.visit(node.collection)):
            self.env.set(node.binding, item)
            results.append(self.visit(node.body))
        return results

    def visit_Filter(self, node: Filter) -> List[Any]:
        return [item for item in iterate(self.visit(node.collection))
                if is_truthy(self._with_carry(item, node.predicate))]

    def visit_Reduce(self, node: Reduce) -> float:
        return total(self.visit(node.collection))

    def visit_TryRescue(self, node: TryRescue) -> Any:
        try:
            return self.visit(node.body)
        except AetherRuntimeError as error:
            if not error.recoverable:
                raise
            logger.debug("rescued %s", error)
            if node.rescue is None:
                return None
            return self.visit(node.rescue)

    def visit_Retry(self, node: Retry) -> Any:
        for attempt in range(1, node.count + 1):
            try:
                return self.visit(node.body)
            except AetherRuntimeError as error:
                if not error.recoverable or attempt == node.count:
                    raise
                logger.debug("attempt %d/%d failed: %s", attempt, node.count, error)

    # Operators

    def visit_BinaryLogic(self, node: BinaryLogic) -> bool:
        left = self.visit(node.left)
        if node.kind == AND and not is_truthy(left):
            return False
        if node.kind == OR and is_truthy(left):
            return True
        return logic(node.kind, left, self.visit(node.right))

    def visit_Not(self, node: Not) -> bool:
        return not is_truthy(self.visit(node.operand))

    def visit_Compare(self, node: Compare) -> bool:
        left = self.visit(node.left)
        return compare(node.kind, left, self.visit(node.right))

    def visit_Arithmetic(self, node: Arithmetic) -> float:
        values = [self.visit(operand) for operand in node.operands]
        if node.kind == ROOT and len(values) == 1:
            return root(values[0])
        result = values[0]
        for value in values[1:]:
            result = arithmetic(node.kind, result, value)
        return result

    # Capabilities

    def visit_Input(self, node: Input) -> Any:
        value = from_python(self.capabilities.read_input())
        if node.key is None:
            return value
        return index(value, node.key)

    def visit_Output(self, node: Output) -> Any:
        value = self.visit(node.operand)
        self.capabilities.write_output(value)
        return value

    def visit_Persist(self, node: Persist) -> Any:
        value = self.visit(node.operand)
        self.capabilities.persist(value)
        return value

    def visit_Query(self, node: Query) -> Any:
        return from_python(self.capabilities.query(self.visit(node.operand)))

    def visit_JsonParse(self, node: JsonParse) -> Any:
        return parse_json(self.visit(node.operand))

    def visit_Async(self, node: Async) -> Any:
        task = Interpreter(self.capabilities, self.max_iterations, self.debug, self.env)
        task.functions = self.functions
        return self.capabilities.invoke_async(lambda: task.evaluate(node.body))

    def visit_Await(self, node: Await) -> Any:
        handle = require_task(self.visit(node.operand))
        return from_python(self.capabilities.await_task(handle))

    def visit_Builtin(self, node: Builtin) -> Any:
        args = [self.visit(operand) for operand in node.operands]
        return call_builtin(node.op, args, self.capabilities)

    def visit_Debug(self, node: Debug) -> Any:
        logger.debug("environment: %r functions: %s", self.env.snapshot(), sorted(self.functions))
        return None

    def visit_Test(self, node: Test) -> Any:
        logger.info("test %s: running", node.name)
        result = self.visit(node.body)
        logger.info("test %s: passed", node.name)
        return result

    def visit_Assert(self, node: Assert) -> bool:
        return check_assertion(self.visit(node.operand))
