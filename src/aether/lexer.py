"""
Aether Lexer
Tokenizes glyph source text into a stream of tokens.

The source is segmented into extended grapheme clusters first, so a glyph
such as #️⃣ (three code points) is always handled as one unit.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple

import regex

from .errors import LexError
from .symbols import SYMBOLS, Op

class TokenType(Enum):
    GLYPH = auto()
    STRING = auto()
    NUMBER = auto()
    IDENTIFIER = auto()
    EOF = auto()

@dataclass(frozen=True)
class Token:
    type: TokenType
    value: Any
    position: int
    line: int
    column: int

    def describe(self) -> str:
        if self.type == TokenType.EOF:
            return 'end of input'
        if self.type == TokenType.GLYPH:
            return f"'{self.value.name.lower()}'"
        return f"{self.type.name.lower()} {self.value!r}"

_GRAPHEMES = regex.compile(r'\X')

def graphemes(text: str) -> List[str]:
    return _GRAPHEMES.findall(text)

# glyph text split into clusters -> op; alphabetic glyphs (J) are only
# recognised as whole identifiers
_SEQUENCES: Dict[Tuple[str, ...], Op] = {}
_WORDS: Dict[str, Op] = {}
for _text, _op in SYMBOLS.items():
    if _text.isalpha() and _text.isascii():
        _WORDS[_text] = _op
    else:
        _SEQUENCES[tuple(graphemes(_text))] = _op
_LONGEST = max(len(sequence) for sequence in _SEQUENCES)
_GLYPH_CLUSTERS = {sequence[0] for sequence in _SEQUENCES if len(sequence) == 1}

# tokens after which a sign belongs to an operator, not a number
_OPERAND_END = {
    Op.RIGHT_PAREN, Op.RIGHT_BRACKET, Op.RIGHT_BRACE,
    Op.TRUE, Op.FALSE, Op.NULL, Op.INFINITY, Op.PIPE,
    # operations that take no operand
    Op.RANDOM, Op.DATETIME, Op.DEBUG, Op.INPUT,
}

_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '0': '\0', '"': '"', '\\': '\\'}

class Lexer:
    def __init__(self, source: str):
        self.source = source
        self.clusters = graphemes(source)
        self.position = 0
        self.line = 1
        self.column = 1
        self.tokens: List[Token] = []

    def current_char(self) -> Optional[str]:
        if self.position >= len(self.clusters):
            return None
        return self.clusters[self.position]

    def peek_char(self, offset: int = 1) -> Optional[str]:
        peek_pos = self.position + offset
        if peek_pos >= len(self.clusters):
            return None
        return self.clusters[peek_pos]

    def advance(self) -> Optional[str]:
        char = self.current_char()
        self.position += 1
        if char is not None and '\n' in char:
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        return char

    def error(self, message: str, position: int = None, line: int = None, column: int = None):
        raise LexError(message,
                       self.position if position is None else position,
                       self.line if line is None else line,
                       self.column if column is None else column)

    def add_token(self, token_type: TokenType, value: Any, start: Tuple[int, int, int]):
        self.tokens.append(Token(token_type, value, *start))

    def skip_whitespace(self):
        while self.current_char() is not None and self.current_char().isspace():
            self.advance()

    def skip_comment(self):
        while self.current_char() is not None and '\n' not in self.current_char():
            self.advance()

    def match_glyph(self) -> Optional[Tuple[Op, int]]:
        """Longest glyph sequence starting at the current position"""
        for length in range(_LONGEST, 0, -1):
            window = tuple(self.clusters[self.position:self.position + length])
            if len(window) == length and window in _SEQUENCES:
                return _SEQUENCES[window], length
        return None

    def sign_starts_number(self) -> bool:
        if self.current_char() not in ('-', '+') or not is_digit(self.peek_char()):
            return False
        if not self.tokens:
            return True
        previous = self.tokens[-1]
        return previous.type == TokenType.GLYPH and previous.value not in _OPERAND_END

    def read_string(self) -> str:
        start = (self.position, self.line, self.column)
        self.advance()  # opening quote
        value = ''
        while True:
            char = self.current_char()
            if char is None:
                self.error("Unterminated string", *start)
            if char == '"':
                self.advance()
                return value
            if char == '\\':
                self.advance()
                escaped = self.current_char()
                if escaped not in _ESCAPES:
                    self.error(f"Unknown escape sequence '\\{escaped or ''}'")
                value += _ESCAPES[escaped]
                self.advance()
            else:
                value += char
                self.advance()

    def read_number(self) -> float:
        text = ''
        if self.current_char() in ('-', '+'):
            text += self.advance()
        while is_digit(self.current_char()):
            text += self.advance()
        if self.current_char() == '.' and is_digit(self.peek_char()):
            text += self.advance()
            while is_digit(self.current_char()):
                text += self.advance()
        return float(text)

    def read_identifier(self) -> str:
        value = ''
        while is_identifier_char(self.current_char()):
            value += self.advance()
        return value

    def tokenize(self) -> List[Token]:
        while self.position < len(self.clusters):
            self.skip_whitespace()
            char = self.current_char()
            if char is None:
                break

            start = (self.position, self.line, self.column)

            if char == '/' and self.peek_char() == '/':
                self.skip_comment()
                continue

            if self.sign_starts_number():
                self.add_token(TokenType.NUMBER, self.read_number(), start)
                continue

            if char == '"':
                self.add_token(TokenType.STRING, self.read_string(), start)
                continue

            if is_digit(char):
                self.add_token(TokenType.NUMBER, self.read_number(), start)
                continue

            if is_identifier_start(char):
                name = self.read_identifier()
                if name in _WORDS:
                    self.add_token(TokenType.GLYPH, _WORDS[name], start)
                else:
                    self.add_token(TokenType.IDENTIFIER, name, start)
                continue

            matched = self.match_glyph()
            if matched is not None:
                op, length = matched
                for _ in range(length):
                    self.advance()
                self.add_token(TokenType.GLYPH, op, start)
                continue

            self.error(f"Unrecognized glyph {char!r}")

        self.tokens.append(Token(TokenType.EOF, None, self.position, self.line, self.column))
        return self.tokens

def is_digit(char: Optional[str]) -> bool:
    return char is not None and len(char) == 1 and char in '0123456789'

def is_identifier_start(char: Optional[str]) -> bool:
    if char is None or char in _GLYPH_CLUSTERS:
        return False
    return char == '_' or (len(char) == 1 and char.isalpha())

def is_identifier_char(char: Optional[str]) -> bool:
    return is_identifier_start(char) or is_digit(char)

def tokenize(source: str) -> List[Token]:
    return Lexer(source).tokenize()
