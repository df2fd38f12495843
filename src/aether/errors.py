"""
Aether Errors
Exception taxonomy shared by the tokenizer, parser, evaluator, compiler and VM
"""

from enum import Enum, auto
from typing import Any, Optional

class AetherError(Exception):
    """Base class for every error the language reports"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

class LexError(AetherError):
    def __init__(self, message: str, position: int, line: int, column: int):
        self.position = position
        self.line = line
        self.column = column
        super().__init__(f"Lex error at line {line}, column {column}: {message}")
        self.message = message

class ParseError(AetherError):
    def __init__(self, message: str, token):
        self.token = token
        super().__init__(f"Parse error at line {token.line}, column {token.column}: {message}")
        self.message = message

class RuntimeErrorKind(Enum):
    TYPE_MISMATCH = auto()
    DIVISION_BY_ZERO = auto()
    INDEX_OUT_OF_RANGE = auto()
    NULL_DEREFERENCE = auto()
    IMMUTABLE_VIOLATION = auto()
    UNDEFINED_NAME = auto()
    ASYNC_TIMEOUT = auto()
    ITERATION_LIMIT = auto()
    DOMAIN_ERROR = auto()
    RECURSION_LIMIT = auto()
    ASSERTION_FAILED = auto()
    INVALID_VALUE = auto()
    CAPABILITY_ERROR = auto()

class AetherRuntimeError(AetherError):
    """A language-level failure while evaluating or executing a program.

    ``offset`` is filled in by the VM with the offset of the failing
    instruction; the tree-walking evaluator leaves it as None.
    """

    def __init__(self, kind: RuntimeErrorKind, message: str, offset: Optional[int] = None):
        self.kind = kind
        self.offset = offset
        super().__init__(message)

    @property
    def recoverable(self) -> bool:
        """Whether try/retry blocks may catch this error"""
        return True

    def __str__(self) -> str:
        where = f" at offset {self.offset}" if self.offset is not None else ''
        return f"{self.kind.name}{where}: {self.message}"

class IterationLimitExceeded(AetherRuntimeError):
    """Raised when a loop runs past the configured iteration ceiling.

    The ceiling is a safety valve against runaway loops, not a language
    guarantee; programs should not rely on its exact value.
    """

    def __init__(self, limit: int, offset: Optional[int] = None):
        self.limit = limit
        super().__init__(RuntimeErrorKind.ITERATION_LIMIT,
                         f"loop exceeded {limit} iterations", offset)

    @property
    def recoverable(self) -> bool:
        return False

class BytecodeErrorKind(Enum):
    BAD_MAGIC = auto()
    UNSUPPORTED_VERSION = auto()
    TRUNCATED = auto()
    TRAILING_DATA = auto()
    INVALID_CONSTANT = auto()
    UNKNOWN_OPCODE = auto()
    JUMP_OUT_OF_RANGE = auto()
    UNRESOLVED_JUMP = auto()
    STACK_UNDERFLOW = auto()
    BAD_CONSTANT_INDEX = auto()
    NESTING_LIMIT = auto()

class BytecodeError(AetherError):
    def __init__(self, kind: BytecodeErrorKind, message: str, offset: Optional[int] = None):
        self.kind = kind
        self.offset = offset
        super().__init__(message)

    def __str__(self) -> str:
        where = f" at offset {self.offset}" if self.offset is not None else ''
        return f"{self.kind.name}{where}: {self.message}"

class HaltSignal(AetherError):
    """Program-requested termination carrying a user code"""

    def __init__(self, code: Any, offset: Optional[int] = None):
        self.code = code
        self.offset = offset
        super().__init__(f"halted with code {code!r}")
