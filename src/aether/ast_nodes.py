"""
Aether AST Nodes
Abstract Syntax Tree node definitions
"""

import sys
from abc import ABC
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .symbols import Op

class ASTNode(ABC):
    """Base class for all AST nodes"""
    pass

# Values and names
@dataclass
class Literal(ASTNode):
    value: Any

@dataclass
class Variable(ASTNode):
    name: str

@dataclass
class Empty(ASTNode):
    """The pipe-carry slot: the value most recently piped in"""
    pass

@dataclass
class ArrayLiteral(ASTNode):
    elements: List[ASTNode]

@dataclass
class ObjectLiteral(ASTNode):
    pairs: List[Tuple[str, ASTNode]]

@dataclass
class Index(ASTNode):
    target: ASTNode
    key: ASTNode

# Functions
@dataclass
class Function(ASTNode):
    name: str
    body: ASTNode

@dataclass
class Lambda(ASTNode):
    body: ASTNode

# Composition
@dataclass
class Sequence(ASTNode):
    statements: List[ASTNode]

@dataclass
class Pipe(ASTNode):
    source: ASTNode
    operation: ASTNode

@dataclass
class PipeInto(ASTNode):
    source: ASTNode
    name: str
    immutable: bool = False

@dataclass
class Guard(ASTNode):
    value: ASTNode
    alternative: ASTNode

@dataclass
class Halt(ASTNode):
    code: ASTNode

# Control flow
@dataclass
class If(ASTNode):
    condition: ASTNode
    then_branch: ASTNode
    elifs: List[Tuple[ASTNode, ASTNode]] = field(default_factory=list)
    else_branch: Optional[ASTNode] = None

@dataclass
class Loop(ASTNode):
    condition: Optional[ASTNode]
    body: ASTNode

@dataclass
class ForEach(ASTNode):
    binding: str
    collection: ASTNode
    body: ASTNode

@dataclass
class Filter(ASTNode):
    predicate: ASTNode
    collection: ASTNode

@dataclass
class Reduce(ASTNode):
    collection: ASTNode

@dataclass
class TryRescue(ASTNode):
    body: ASTNode
    rescue: Optional[ASTNode] = None

@dataclass
class Retry(ASTNode):
    count: int
    body: ASTNode

# Operators
AND = 'AND'
OR = 'OR'

EQUAL = 'EQUAL'
NOT_EQUAL = 'NOT_EQUAL'
LESS_THAN = 'LESS_THAN'
GREATER_THAN = 'GREATER_THAN'
APPROX = 'APPROX'

ADD = 'ADD'
SUB = 'SUB'
MUL = 'MUL'
DIV = 'DIV'
POWER = 'POWER'
ROOT = 'ROOT'

@dataclass
class BinaryLogic(ASTNode):
    kind: str
    left: ASTNode
    right: ASTNode

@dataclass
class Not(ASTNode):
    operand: ASTNode

@dataclass
class Compare(ASTNode):
    kind: str
    left: ASTNode
    right: ASTNode

@dataclass
class Arithmetic(ASTNode):
    kind: str
    operands: List[ASTNode]

# Capabilities
@dataclass
class Input(ASTNode):
    key: Optional[str] = None

@dataclass
class Output(ASTNode):
    operand: ASTNode

@dataclass
class Persist(ASTNode):
    operand: ASTNode

@dataclass
class Query(ASTNode):
    operand: ASTNode

@dataclass
class JsonParse(ASTNode):
    operand: ASTNode

@dataclass
class Async(ASTNode):
    body: ASTNode

@dataclass
class Await(ASTNode):
    operand: ASTNode

@dataclass
class Builtin(ASTNode):
    """Host operation: strings, crypto, time, files, network"""
    op: Op
    operands: List[ASTNode]

@dataclass
class Debug(ASTNode):
    pass

@dataclass
class Test(ASTNode):
    name: str
    body: ASTNode

@dataclass
class Assert(ASTNode):
    operand: ASTNode

def head_operand(node: ASTNode) -> Optional[ASTNode]:
    """The operand evaluated first, where the piped value lands"""
    if isinstance(node, Arithmetic):
        return node.operands[0] if node.operands else None
    if isinstance(node, Builtin):
        return node.operands[0] if node.operands else None
    if isinstance(node, (Compare, BinaryLogic)):
        return node.left
    if isinstance(node, Index):
        return node.target
    if isinstance(node, (ForEach, Filter, Reduce)):
        return node.collection
    if isinstance(node, Halt):
        return node.code
    if isinstance(node, (Not, Output, Persist, Query, JsonParse, Await, Assert)):
        return node.operand
    return None

def takes_carry(node: ASTNode) -> bool:
    """Whether an operation consumes the piped value"""
    while node is not None:
        if isinstance(node, (Empty, Lambda)):
            return True
        node = head_operand(node)
    return False

# frames the parser, evaluator and compiler may use on deeply nested programs
NESTING_RECURSION_LIMIT = 5_000

def allow_deep_nesting():
    """Raise the interpreter recursion limit; never lowers it"""
    if sys.getrecursionlimit() < NESTING_RECURSION_LIMIT:
        sys.setrecursionlimit(NESTING_RECURSION_LIMIT)

def ast_to_dict(node: ASTNode) -> Dict[str, Any]:
    """Convert AST node to dictionary representation"""
    if isinstance(node, list):
        return [ast_to_dict(item) for item in node]
    if isinstance(node, tuple):
        return [ast_to_dict(item) for item in node]
    if isinstance(node, Op):
        return node.name

    if not isinstance(node, ASTNode):
        return node

    result = {'type': node.__class__.__name__}
    for name, value in node.__dict__.items():
        result[name] = ast_to_dict(value)
    return result

def pretty_print_ast(node: ASTNode, indent: int = 0) -> str:
    """Pretty print AST for debugging"""
    spaces = '  ' * indent

    if isinstance(node, (list, tuple)):
        if not node:
            return '[]'
        result = '[\n'
        for item in node:
            result += f'{spaces}  {pretty_print_ast(item, indent + 1)},\n'
        result += f'{spaces}]'
        return result

    if not isinstance(node, ASTNode):
        return node.name if isinstance(node, Op) else repr(node)

    fields = node.__dict__
    if not fields:
        return f'{node.__class__.__name__}()'
    result = f'{node.__class__.__name__}(\n'
    for name, value in fields.items():
        result += f'{spaces}  {name}={pretty_print_ast(value, indent + 1)},\n'
    result += f'{spaces})'
    return result
