"""
Aether Symbol Table
Fixed bidirectional mapping between glyphs and operation identifiers
"""

from enum import Enum, auto
from typing import Dict, List, Tuple

class Op(Enum):
    # Core
    FUNCTION = auto()
    LAMBDA = auto()
    PIPE = auto()
    PIPE_INTO = auto()
    SEQUENCE = auto()
    GUARD = auto()
    HALT = auto()

    # Control
    IF = auto()
    ELSE_IF = auto()
    ELSE = auto()

    # Logic
    AND = auto()
    OR = auto()
    NOT = auto()

    # Comparison
    EQUAL = auto()
    NOT_EQUAL = auto()
    LESS = auto()
    GREATER = auto()
    APPROX = auto()

    # Arithmetic
    ADD = auto()
    SUB = auto()
    MUL = auto()
    DIV = auto()
    POWER = auto()
    ROOT = auto()

    # Literals
    TRUE = auto()
    FALSE = auto()
    NULL = auto()
    INFINITY = auto()

    # I/O and data
    INPUT = auto()
    OUTPUT = auto()
    PERSIST = auto()
    QUERY = auto()
    JSON_PARSE = auto()

    # Iteration
    LOOP = auto()
    FOREACH = auto()
    IN = auto()
    FILTER = auto()
    REDUCE = auto()

    # Recovery
    TRY = auto()
    RESCUE = auto()
    RETRY = auto()
    IMMUTABLE = auto()

    # Async
    ASYNC = auto()
    AWAIT = auto()

    # Strings and crypto
    SPLIT = auto()
    JOIN = auto()
    REGEX = auto()
    HASH = auto()
    ENCRYPT = auto()
    DECRYPT = auto()
    SIGN = auto()
    VERIFY = auto()

    # Host
    HTTP_GET = auto()
    DATETIME = auto()
    RANDOM = auto()
    LOG = auto()
    DEBUG = auto()
    ENV = auto()
    TEST = auto()
    ASSERT = auto()
    FILE_READ = auto()
    FILE_WRITE = auto()
    FILE_APPEND = auto()

    # Punctuation
    LEFT_PAREN = auto()
    RIGHT_PAREN = auto()
    LEFT_BRACKET = auto()
    RIGHT_BRACKET = auto()
    LEFT_BRACE = auto()
    RIGHT_BRACE = auto()
    COMMA = auto()
    COLON = auto()
    DOT = auto()

# (op, canonical glyph, aliases, description)
_TABLE: List[Tuple[Op, str, Tuple[str, ...], str]] = [
    (Op.FUNCTION, 'ƒ', (), 'define a named function'),
    (Op.LAMBDA, 'λ', (), 'bind the piped value to `it` and evaluate a body'),
    (Op.PIPE, '⇢', ('->',), 'pipe a value into an operation'),
    (Op.PIPE_INTO, '▷', ('=>',), 'bind a value to a variable'),
    (Op.SEQUENCE, '⨠', (';',), 'sequence separator'),
    (Op.GUARD, '⁇', ('??',), 'replace a falsy value and stop the sequence'),
    (Op.HALT, '🛑', (), 'halt with a code'),

    (Op.IF, '◇', (), 'if'),
    (Op.ELSE_IF, '◈', ('◆◇',), 'else if'),
    (Op.ELSE, '◆', (), 'else'),

    (Op.AND, '⊗', ('&&',), 'logical and (short-circuit)'),
    (Op.OR, '⊕', ('||',), 'logical or (short-circuit)'),
    (Op.NOT, '¬', ('!',), 'logical not'),

    (Op.EQUAL, '≡', ('==',), 'equal'),
    (Op.NOT_EQUAL, '≠', ('!=',), 'not equal'),
    (Op.LESS, '<', (), 'less than'),
    (Op.GREATER, '>', (), 'greater than'),
    (Op.APPROX, '≈', (), 'approximately equal'),

    (Op.ADD, '+', (), 'add'),
    (Op.SUB, '-', (), 'subtract'),
    (Op.MUL, '*', ('×',), 'multiply'),
    (Op.DIV, '/', ('÷',), 'divide'),
    (Op.POWER, '↑', ('^',), 'raise to a power'),
    (Op.ROOT, '√', (), 'square root, or n-th root when infix'),

    (Op.TRUE, '✓', (), 'true'),
    (Op.FALSE, '✗', (), 'false'),
    (Op.NULL, '∅', (), 'null'),
    (Op.INFINITY, '∞', (), 'infinity'),

    (Op.INPUT, '📥', (), 'read input'),
    (Op.OUTPUT, '📤', (), 'write output'),
    (Op.PERSIST, '💾', (), 'persist a value'),
    (Op.QUERY, '🔍', (), 'query persisted values'),
    (Op.JSON_PARSE, 'J', (), 'parse JSON text'),

    (Op.LOOP, '↻', (), 'loop while a condition holds'),
    (Op.FOREACH, '∀', (), 'for each element'),
    (Op.IN, '∈', (), 'in'),
    (Op.FILTER, '∃', (), 'filter a piped collection'),
    (Op.REDUCE, '∑', (), 'sum a collection'),

    (Op.TRY, '🛡', (), 'try'),
    (Op.RESCUE, '🩹', (), 'rescue value for try'),
    (Op.RETRY, '♻', (), 'retry a body'),
    (Op.IMMUTABLE, '🧊', (), 'immutable binding'),

    (Op.ASYNC, '⚡', (), 'start an async task'),
    (Op.AWAIT, '⏳', (), 'await an async task'),

    (Op.SPLIT, '✂', ('✂️',), 'split text'),
    (Op.JOIN, '🔗', (), 'join an array into text'),
    (Op.REGEX, '✱', (), 'regex search'),
    (Op.HASH, '#️⃣', (), 'sha256 hash'),
    (Op.ENCRYPT, '🔐', (), 'encrypt'),
    (Op.DECRYPT, '🔓', (), 'decrypt'),
    (Op.SIGN, '✍️', ('✍',), 'sign'),
    (Op.VERIFY, '🛡️', (), 'verify a signature'),

    (Op.HTTP_GET, '🌐', (), 'HTTP GET'),
    (Op.DATETIME, '📅', (), 'current date and time'),
    (Op.RANDOM, '🎲', (), 'random number'),
    (Op.LOG, '🪵', (), 'log a value'),
    (Op.DEBUG, '🐛', (), 'dump the environment'),
    (Op.ENV, '🌍', (), 'read an environment variable'),
    (Op.TEST, '🧪', (), 'named test block'),
    (Op.ASSERT, '⚖️', ('⚖',), 'assert'),
    (Op.FILE_READ, '📖', (), 'read a file'),
    (Op.FILE_WRITE, '🖊️', ('🖊',), 'write a file'),
    (Op.FILE_APPEND, '🖇️', ('🖇',), 'append to a file'),

    (Op.LEFT_PAREN, '(', (), 'group'),
    (Op.RIGHT_PAREN, ')', (), 'end group'),
    (Op.LEFT_BRACKET, '[', (), 'array or index'),
    (Op.RIGHT_BRACKET, ']', (), 'end array or index'),
    (Op.LEFT_BRACE, '{', (), 'object'),
    (Op.RIGHT_BRACE, '}', (), 'end object'),
    (Op.COMMA, ',', (), 'separator'),
    (Op.COLON, ':', (), 'body or key separator'),
    (Op.DOT, '.', (), 'field access'),
]

SYMBOLS: Dict[str, Op] = {}
GLYPHS: Dict[Op, str] = {}
DESCRIPTIONS: Dict[Op, str] = {}

for _op, _glyph, _aliases, _description in _TABLE:
    GLYPHS[_op] = _glyph
    DESCRIPTIONS[_op] = _description
    for _text in (_glyph,) + _aliases:
        if _text in SYMBOLS:
            raise ValueError(f"Glyph {_text!r} bound twice")
        SYMBOLS[_text] = _op

def glyph(op: Op) -> str:
    """Canonical glyph for an operation"""
    return GLYPHS[op]

def lookup(text: str) -> Op:
    return SYMBOLS[text]

def aliases(op: Op) -> List[str]:
    return [text for text, bound in SYMBOLS.items() if bound is op and text != GLYPHS[op]]

def describe() -> str:
    """Render the symbol table for help output"""
    lines = []
    for op, canonical, extra, description in _TABLE:
        alias_text = f"  (also {', '.join(extra)})" if extra else ''
        lines.append(f"{canonical:<4} {op.name.lower():<12} {description}{alias_text}")
    return '\n'.join(lines)
