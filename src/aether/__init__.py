"""
Aether Programming Language
Glyph-based pipeline language with a tree-walking evaluator and a bytecode VM
"""

__version__ = '1.0.0'

from .bytecode import BytecodeProgram, Opcode, decode, disassemble, encode
from .capabilities import Capabilities, DefaultCapabilities, RecordingCapabilities
from .compiler import Compiler
from .environment import Environment
from .errors import (AetherError, AetherRuntimeError, BytecodeError, BytecodeErrorKind, HaltSignal,
                     IterationLimitExceeded, LexError, ParseError, RuntimeErrorKind)
from .explainer import explain
from .interpreter import Interpreter
from .lexer import Lexer, Token, TokenType, tokenize
from .parser import Parser, parse
from .vm import VM
