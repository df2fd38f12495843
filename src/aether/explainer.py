"""
Aether Explainer
Renders a parsed program as indented, readable pseudo-code.

Control constructs (functions, conditionals, loops, recovery blocks) are
rendered as indented blocks; everything else reads as an inline phrase.
"""

from typing import List

from .ast_nodes import *
from .symbols import Op
from .values import represent

_ARITHMETIC = {ADD: '+', SUB: '-', MUL: '×', DIV: '÷', POWER: 'to the power'}

_COMPARE = {
    EQUAL: 'equals',
    NOT_EQUAL: 'differs from',
    LESS_THAN: 'is less than',
    GREATER_THAN: 'is greater than',
    APPROX: 'is approximately',
}

_BUILTIN_NAMES = {
    Op.SPLIT: 'split',
    Op.JOIN: 'join',
    Op.REGEX: 'regex search',
    Op.HASH: 'hash',
    Op.ENCRYPT: 'encrypt',
    Op.DECRYPT: 'decrypt',
    Op.SIGN: 'sign',
    Op.VERIFY: 'verify',
    Op.HTTP_GET: 'http get',
    Op.DATETIME: 'current time',
    Op.RANDOM: 'random number',
    Op.LOG: 'log',
    Op.ENV: 'environment variable',
    Op.FILE_READ: 'read file',
    Op.FILE_WRITE: 'write file',
    Op.FILE_APPEND: 'append to file',
}

class Explainer:
    def __init__(self, indent: str = '  '):
        self.indent = indent

    def explain(self, node: ASTNode) -> str:
        lines: List[str] = []
        self.block(node, 0, lines)
        return '\n'.join(lines)

    # Blocks

    def block(self, node: ASTNode, depth: int, lines: List[str]):
        method = getattr(self, f'block_{node.__class__.__name__}', None)
        if method is None:
            lines.append(self.indent * depth + self.phrase(node))
        else:
            method(node, depth, lines)

    def _header(self, text: str, body: ASTNode, depth: int, lines: List[str]):
        lines.append(self.indent * depth + text)
        self.block(body, depth + 1, lines)

    def block_Sequence(self, node: Sequence, depth: int, lines: List[str]):
        if not node.statements:
            lines.append(self.indent * depth + 'do nothing')
        for statement in node.statements:
            if isinstance(statement, Guard):
                lines.append(self.indent * depth + f"require {self.phrase(statement.value)}, "
                             f"otherwise stop with {self.phrase(statement.alternative)}")
            else:
                self.block(statement, depth, lines)

    def block_Function(self, node: Function, depth: int, lines: List[str]):
        self._header(f"function {node.name}:", node.body, depth, lines)

    def block_Pipe(self, node: Pipe, depth: int, lines: List[str]):
        if hasattr(self, f'block_{node.operation.__class__.__name__}'):
            self._header(f"take {self.phrase(node.source)}, then:", node.operation, depth, lines)
        else:
            lines.append(self.indent * depth + self.phrase(node))

    def block_If(self, node: If, depth: int, lines: List[str]):
        self._header(f"if {self.phrase(node.condition)}:", node.then_branch, depth, lines)
        for condition, branch in node.elifs:
            self._header(f"else if {self.phrase(condition)}:", branch, depth, lines)
        if node.else_branch is not None:
            self._header("else:", node.else_branch, depth, lines)

    def block_Loop(self, node: Loop, depth: int, lines: List[str]):
        if node.condition is None:
            self._header("loop:", node.body, depth, lines)
        else:
            self._header(f"while {self.phrase(node.condition)}:", node.body, depth, lines)

    def block_ForEach(self, node: ForEach, depth: int, lines: List[str]):
        self._header(f"for each {node.binding} in {self.phrase(node.collection)}:", node.body, depth, lines)

    def block_TryRescue(self, node: TryRescue, depth: int, lines: List[str]):
        self._header("try:", node.body, depth, lines)
        if node.rescue is not None:
            self._header("on error:", node.rescue, depth, lines)

    def block_Retry(self, node: Retry, depth: int, lines: List[str]):
        self._header(f"retry up to {node.count} times:", node.body, depth, lines)

    def block_Async(self, node: Async, depth: int, lines: List[str]):
        self._header("run asynchronously:", node.body, depth, lines)

    def block_Test(self, node: Test, depth: int, lines: List[str]):
        self._header(f"test {node.name!r}:", node.body, depth, lines)

    # Phrases

    def phrase(self, node: ASTNode) -> str:
        method = getattr(self, f'phrase_{node.__class__.__name__}', None)
        if method is None:
            raise TypeError(f"No phrase_{node.__class__.__name__} method")
        return method(node)

    def phrase_Literal(self, node: Literal) -> str:
        value = node.value
        if isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        return represent(value)

    def phrase_Variable(self, node: Variable) -> str:
        return node.name

    def phrase_Empty(self, node: Empty) -> str:
        return 'the piped value'

    def phrase_ArrayLiteral(self, node: ArrayLiteral) -> str:
        return '[' + ', '.join(self.phrase(element) for element in node.elements) + ']'

    def phrase_ObjectLiteral(self, node: ObjectLiteral) -> str:
        return '{' + ', '.join(f"{key}: {self.phrase(value)}" for key, value in node.pairs) + '}'

    def phrase_Index(self, node: Index) -> str:
        if isinstance(node.key, Literal) and isinstance(node.key.value, str):
            return f"{self.phrase(node.target)}.{node.key.value}"
        return f"{self.phrase(node.target)}[{self.phrase(node.key)}]"

    def phrase_Function(self, node: Function) -> str:
        return f"define function {node.name} as ({self.phrase(node.body)})"

    def phrase_Lambda(self, node: Lambda) -> str:
        return f"with it as the piped value, {self.phrase(node.body)}"

    def phrase_Sequence(self, node: Sequence) -> str:
        return '(' + '; then '.join(self.phrase(statement) for statement in node.statements) + ')'

    def phrase_Pipe(self, node: Pipe) -> str:
        return f"{self.phrase(node.source)}, then {self.phrase(node.operation)}"

    def phrase_PipeInto(self, node: PipeInto) -> str:
        kind = 'constant' if node.immutable else 'variable'
        return f"{self.phrase(node.source)}, stored in {kind} {node.name}"

    def phrase_Guard(self, node: Guard) -> str:
        return f"{self.phrase(node.value)}, or {self.phrase(node.alternative)} if that is falsy"

    def phrase_Halt(self, node: Halt) -> str:
        return f"halt with code {self.phrase(node.code)}"

    def phrase_If(self, node: If) -> str:
        text = f"if {self.phrase(node.condition)} then {self.phrase(node.then_branch)}"
        for condition, branch in node.elifs:
            text += f", else if {self.phrase(condition)} then {self.phrase(branch)}"
        if node.else_branch is not None:
            text += f", else {self.phrase(node.else_branch)}"
        return text

    def phrase_Loop(self, node: Loop) -> str:
        if node.condition is None:
            return f"repeat {self.phrase(node.body)}"
        return f"while {self.phrase(node.condition)} repeat {self.phrase(node.body)}"

    def phrase_ForEach(self, node: ForEach) -> str:
        return f"for each {node.binding} in {self.phrase(node.collection)}, {self.phrase(node.body)}"

    def phrase_Filter(self, node: Filter) -> str:
        return f"the items of {self.phrase(node.collection)} where {self.phrase(node.predicate)}"

    def phrase_Reduce(self, node: Reduce) -> str:
        return f"the sum of {self.phrase(node.collection)}"

    def phrase_TryRescue(self, node: TryRescue) -> str:
        text = f"try {self.phrase(node.body)}"
        if node.rescue is not None:
            text += f", on error {self.phrase(node.rescue)}"
        return text

    def phrase_Retry(self, node: Retry) -> str:
        return f"{self.phrase(node.body)}, retried up to {node.count} times"

    def phrase_BinaryLogic(self, node: BinaryLogic) -> str:
        word = 'and' if node.kind == AND else 'or'
        return f"({self.phrase(node.left)} {word} {self.phrase(node.right)})"

    def phrase_Not(self, node: Not) -> str:
        return f"not {self.phrase(node.operand)}"

    def phrase_Compare(self, node: Compare) -> str:
        return f"{self.phrase(node.left)} {_COMPARE[node.kind]} {self.phrase(node.right)}"

    def phrase_Arithmetic(self, node: Arithmetic) -> str:
        operands = [self.phrase(operand) for operand in node.operands]
        if node.kind == ROOT:
            if len(operands) == 1:
                return f"square root of {operands[0]}"
            return f"root {operands[1]} of {operands[0]}"
        return '(' + f" {_ARITHMETIC[node.kind]} ".join(operands) + ')'

    def phrase_Input(self, node: Input) -> str:
        if node.key is None:
            return 'read input'
        return f"read input field {node.key}"

    def phrase_Output(self, node: Output) -> str:
        return f"output {self.phrase(node.operand)}"

    def phrase_Persist(self, node: Persist) -> str:
        return f"save {self.phrase(node.operand)}"

    def phrase_Query(self, node: Query) -> str:
        return f"query saved records matching {self.phrase(node.operand)}"

    def phrase_JsonParse(self, node: JsonParse) -> str:
        return f"parse JSON from {self.phrase(node.operand)}"

    def phrase_Async(self, node: Async) -> str:
        return f"start task ({self.phrase(node.body)})"

    def phrase_Await(self, node: Await) -> str:
        return f"wait for {self.phrase(node.operand)}"

    def phrase_Builtin(self, node: Builtin) -> str:
        name = _BUILTIN_NAMES[node.op]
        if not node.operands:
            return name
        return f"{name}({', '.join(self.phrase(operand) for operand in node.operands)})"

    def phrase_Debug(self, node: Debug) -> str:
        return 'dump debug state'

    def phrase_Test(self, node: Test) -> str:
        return f"test {node.name!r}: {self.phrase(node.body)}"

    def phrase_Assert(self, node: Assert) -> str:
        return f"assert {self.phrase(node.operand)}"

def explain(node: ASTNode) -> str:
    return Explainer().explain(node)
