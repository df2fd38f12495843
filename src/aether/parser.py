"""
Aether Parser
Recursive descent parser that builds an Abstract Syntax Tree (AST)

Precedence, loosest first:

    sequence  ⨠
    pipeline  ⇢  ▷  ⁇
    or        ⊕
    and       ⊗
    not       ¬
    compare   ≡ ≠ < > ≈      (non-associative)
    additive  + -
    term      * /
    power     ↑ √            (right-associative)
    unary     - √
    postfix   [index]  .field
    primary

After a pipe arrow, an operator with no explicit left operand takes the
piped value; the parser marks that operand position with Empty.
"""

import math
from typing import List, Optional, Tuple

from .ast_nodes import *
from .errors import ParseError
from .lexer import Token, TokenType, tokenize
from .symbols import Op

_COMPARE = {
    Op.EQUAL: EQUAL,
    Op.NOT_EQUAL: NOT_EQUAL,
    Op.LESS: LESS_THAN,
    Op.GREATER: GREATER_THAN,
    Op.APPROX: APPROX,
}

_ADDITIVE = {Op.ADD: ADD, Op.SUB: SUB}
_MULTIPLICATIVE = {Op.MUL: MUL, Op.DIV: DIV}

# operators that continue an expression from the piped value
_INFIX_IN_PIPE = {
    Op.ADD, Op.SUB, Op.MUL, Op.DIV, Op.POWER, Op.AND, Op.OR,
} | set(_COMPARE)

# single-operand prefix operations: op -> node class
_UNARY_PREFIX = {
    Op.OUTPUT: Output,
    Op.PERSIST: Persist,
    Op.QUERY: Query,
    Op.HALT: Halt,
    Op.JSON_PARSE: JsonParse,
    Op.AWAIT: Await,
    Op.ASSERT: Assert,
    Op.REDUCE: Reduce,
}

# host operations: op -> (minimum, maximum, defaults for trailing operands)
BUILTIN_ARITY = {
    Op.SPLIT: (1, 2, (' ',)),
    Op.JOIN: (1, 2, ('',)),
    Op.REGEX: (2, 2, ()),
    Op.HASH: (1, 1, ()),
    Op.ENCRYPT: (2, 2, ()),
    Op.DECRYPT: (2, 2, ()),
    Op.SIGN: (2, 2, ()),
    Op.VERIFY: (3, 3, ()),
    Op.HTTP_GET: (1, 1, ()),
    Op.DATETIME: (0, 0, ()),
    Op.RANDOM: (0, 0, ()),
    Op.LOG: (1, 1, ()),
    Op.ENV: (1, 1, ()),
    Op.FILE_READ: (1, 1, ()),
    Op.FILE_WRITE: (2, 2, ()),
    Op.FILE_APPEND: (2, 2, ()),
}

# operations whose first operand can be the piped value
_CARRY_PREFIX = set(_UNARY_PREFIX) | {
    op for op, (minimum, _, _) in BUILTIN_ARITY.items() if minimum > 0
} | {Op.NOT, Op.ROOT, Op.FOREACH, Op.FILTER}

_LITERALS = {
    Op.TRUE: True,
    Op.FALSE: False,
    Op.NULL: None,
    Op.INFINITY: math.inf,
}

_OPERAND_START = set(_UNARY_PREFIX) | set(BUILTIN_ARITY) | set(_LITERALS) | {
    Op.LEFT_PAREN, Op.LEFT_BRACKET, Op.LEFT_BRACE, Op.SUB, Op.ROOT, Op.NOT,
    Op.INPUT, Op.IF, Op.LOOP, Op.FOREACH, Op.TRY, Op.RETRY, Op.ASYNC,
    Op.DEBUG, Op.TEST,
}

DEFAULT_RETRIES = 3
DEFAULT_BINDING = 'it'

class Parser:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.current = 0

    def is_at_end(self) -> bool:
        return self.peek().type == TokenType.EOF

    def peek(self) -> Token:
        return self.tokens[self.current]

    def previous(self) -> Token:
        return self.tokens[self.current - 1]

    def advance(self) -> Token:
        if not self.is_at_end():
            self.current += 1
        return self.previous()

    def check(self, op: Op) -> bool:
        token = self.peek()
        return token.type == TokenType.GLYPH and token.value is op

    def check_type(self, token_type: TokenType) -> bool:
        return self.peek().type == token_type

    def match(self, *ops: Op) -> bool:
        for op in ops:
            if self.check(op):
                self.advance()
                return True
        return False

    def consume(self, op: Op, message: str) -> Token:
        if self.check(op):
            return self.advance()
        raise self.error(message)

    def consume_type(self, token_type: TokenType, message: str) -> Token:
        if self.check_type(token_type):
            return self.advance()
        raise self.error(message)

    def error(self, message: str, token: Optional[Token] = None) -> ParseError:
        token = token or self.peek()
        return ParseError(f"{message}, found {token.describe()}", token)

    def starts_operand(self) -> bool:
        token = self.peek()
        if token.type in (TokenType.NUMBER, TokenType.STRING, TokenType.IDENTIFIER):
            return True
        return token.type == TokenType.GLYPH and token.value in _OPERAND_START

    # Statements

    def parse(self) -> ASTNode:
        allow_deep_nesting()
        try:
            return self.program()
        except RecursionError:
            raise self.error("Program is nested too deeply") from None

    def program(self) -> ASTNode:
        statements = []
        while not self.is_at_end():
            statements.extend(self.statement_list())
            if not self.is_at_end() and not self.starts_statement():
                raise self.error("Expected statement")
        if not statements:
            return Sequence([])
        if len(statements) == 1:
            return statements[0]
        return Sequence(statements)

    def starts_statement(self) -> bool:
        return self.check(Op.FUNCTION) or self.starts_operand()

    def statement_list(self) -> List[ASTNode]:
        statements = [self.statement()]
        while self.match(Op.SEQUENCE):
            if self.is_at_end() or self.check(Op.RIGHT_PAREN):
                break
            statements.append(self.statement())
        return statements

    def block(self) -> ASTNode:
        """Parenthesised statements"""
        statements = self.statement_list()
        self.consume(Op.RIGHT_PAREN, "Expected ')'")
        if len(statements) == 1:
            return statements[0]
        return Sequence(statements)

    def statement(self) -> ASTNode:
        if self.match(Op.FUNCTION):
            name = self.consume_type(TokenType.IDENTIFIER, "Expected function name").value
            self.consume(Op.COLON, "Expected ':' after function name")
            return Function(name, self.pipeline())
        return self.pipeline()

    def pipeline(self) -> ASTNode:
        node = self.expression()
        while True:
            if self.match(Op.PIPE):
                node = Pipe(node, self.operation())
            elif self.match(Op.PIPE_INTO):
                immutable = self.match(Op.IMMUTABLE)
                name = self.consume_type(TokenType.IDENTIFIER, "Expected variable name after '▷'").value
                node = PipeInto(node, name, immutable)
            elif self.match(Op.GUARD):
                node = Guard(node, self.expression())
            else:
                return node

    def operation(self) -> ASTNode:
        """Right-hand side of a pipe arrow"""
        token = self.peek()
        if token.type == TokenType.GLYPH:
            if token.value in _INFIX_IN_PIPE:
                return self.expression(Empty())
            if token.value in _CARRY_PREFIX:
                self.advance()
                return self.expression(self.prefix_operation(token, carry=True))
            if token.value is Op.LAMBDA:
                self.advance()
                return Lambda(self.expression())
        return self.expression()

    # Expressions; `head` is an operand that has already been parsed

    def expression(self, head: Optional[ASTNode] = None) -> ASTNode:
        return self.logical_or(head)

    def logical_or(self, head: Optional[ASTNode] = None) -> ASTNode:
        left = self.logical_and(head)
        while self.match(Op.OR):
            left = BinaryLogic(OR, left, self.logical_and())
        return left

    def logical_and(self, head: Optional[ASTNode] = None) -> ASTNode:
        left = self.logical_not(head)
        while self.match(Op.AND):
            left = BinaryLogic(AND, left, self.logical_not())
        return left

    def logical_not(self, head: Optional[ASTNode] = None) -> ASTNode:
        if head is None and self.match(Op.NOT):
            return Not(self.logical_not())
        return self.comparison(head)

    def comparison(self, head: Optional[ASTNode] = None) -> ASTNode:
        left = self.additive(head)
        token = self.peek()
        if token.type == TokenType.GLYPH and token.value in _COMPARE:
            self.advance()
            node = Compare(_COMPARE[token.value], left, self.additive())
            following = self.peek()
            if following.type == TokenType.GLYPH and following.value in _COMPARE:
                raise self.error("Comparisons cannot be chained")
            return node
        return left

    def additive(self, head: Optional[ASTNode] = None) -> ASTNode:
        return self.left_chain(self.term, _ADDITIVE, head)

    def term(self, head: Optional[ASTNode] = None) -> ASTNode:
        return self.left_chain(self.power, _MULTIPLICATIVE, head)

    def left_chain(self, operand, operators, head: Optional[ASTNode] = None) -> ASTNode:
        """Left-associative operators; a run of one operator shares a single
        Arithmetic node, so `1 + 2 + 3` is ADD [1, 2, 3]."""
        left = operand(head)
        chain = None
        while True:
            token = self.peek()
            if token.type != TokenType.GLYPH or token.value not in operators:
                return left
            self.advance()
            kind = operators[token.value]
            right = operand()
            if chain is not None and chain.kind == kind:
                chain.operands.append(right)
            else:
                left = chain = Arithmetic(kind, [left, right])

    def power(self, head: Optional[ASTNode] = None) -> ASTNode:
        base = self.unary(head)
        if self.match(Op.POWER):
            return Arithmetic(POWER, [base, self.power()])
        if self.match(Op.ROOT):
            return Arithmetic(ROOT, [base, self.power()])
        return base

    def unary(self, head: Optional[ASTNode] = None) -> ASTNode:
        if head is not None:
            return self.postfix(head)
        if self.match(Op.SUB):
            return Arithmetic(SUB, [Literal(0.0), self.unary()])
        if self.match(Op.ROOT):
            return Arithmetic(ROOT, [self.unary()])
        return self.postfix(self.primary())

    def postfix(self, node: ASTNode) -> ASTNode:
        while True:
            if self.match(Op.LEFT_BRACKET):
                key = self.expression()
                self.consume(Op.RIGHT_BRACKET, "Expected ']' after index")
                node = Index(node, key)
            elif self.match(Op.DOT):
                name = self.consume_type(TokenType.IDENTIFIER, "Expected field name after '.'").value
                node = Index(node, Literal(name))
            else:
                return node

    def primary(self) -> ASTNode:
        token = self.peek()

        if token.type == TokenType.NUMBER or token.type == TokenType.STRING:
            self.advance()
            return Literal(token.value)
        if token.type == TokenType.IDENTIFIER:
            self.advance()
            return Variable(token.value)
        if token.type != TokenType.GLYPH:
            raise self.error("Expected expression")

        op = token.value
        if op in _LITERALS:
            self.advance()
            return Literal(_LITERALS[op])
        if self.match(Op.LEFT_PAREN):
            return self.block()
        if self.match(Op.LEFT_BRACKET):
            return self.array_literal()
        if self.match(Op.LEFT_BRACE):
            return self.object_literal()
        if op is Op.FILTER:
            raise self.error("'∃' needs a piped collection")
        if op is Op.LAMBDA:
            raise self.error("'λ' needs a piped value")
        if op is Op.FUNCTION:
            raise self.error("Function definitions must be statements")
        if op in _CARRY_PREFIX or op in BUILTIN_ARITY or op in (
                Op.INPUT, Op.IF, Op.LOOP, Op.TRY, Op.RETRY, Op.ASYNC, Op.DEBUG, Op.TEST):
            self.advance()
            return self.prefix_operation(token, carry=False)
        raise self.error("Expected expression")

    def array_literal(self) -> ArrayLiteral:
        elements = []
        while not self.check(Op.RIGHT_BRACKET):
            elements.append(self.expression())
            if not self.match(Op.COMMA):
                break
        self.consume(Op.RIGHT_BRACKET, "Expected ']' after array elements")
        return ArrayLiteral(elements)

    def object_literal(self) -> ObjectLiteral:
        pairs = []
        while not self.check(Op.RIGHT_BRACE):
            key_token = self.peek()
            if key_token.type not in (TokenType.IDENTIFIER, TokenType.STRING):
                raise self.error("Expected object key")
            self.advance()
            self.consume(Op.COLON, "Expected ':' after object key")
            pairs.append((key_token.value, self.expression()))
            if not self.match(Op.COMMA):
                break
        self.consume(Op.RIGHT_BRACE, "Expected '}' after object pairs")
        return ObjectLiteral(pairs)

    # Prefix operations; `carry` means the first operand is the piped value

    def prefix_operation(self, token: Token, carry: bool) -> ASTNode:
        op = token.value

        if op in _UNARY_PREFIX:
            if carry:
                operand = Empty()
            elif op is Op.HALT and not self.starts_operand():
                operand = Literal(0.0)
            else:
                operand = self.expression()
            return _UNARY_PREFIX[op](operand)
        if op in BUILTIN_ARITY:
            return Builtin(op, self.arguments(op, carry))
        if op is Op.NOT:
            return Not(Empty() if carry else self.unary())
        if op is Op.ROOT:
            return Arithmetic(ROOT, [Empty() if carry else self.unary()])
        if op is Op.FOREACH:
            return self.for_each(carry)
        if op is Op.FILTER:
            return Filter(self.operation(), Empty())
        if op is Op.INPUT:
            key = None
            if self.check_type(TokenType.IDENTIFIER):
                key = self.advance().value
            return Input(key)
        if op is Op.IF:
            return self.if_chain()
        if op is Op.LOOP:
            return self.loop()
        if op is Op.TRY:
            body = self.expression()
            rescue = self.expression() if self.match(Op.RESCUE) else None
            return TryRescue(body, rescue)
        if op is Op.RETRY:
            return self.retry()
        if op is Op.ASYNC:
            return Async(self.expression())
        if op is Op.DEBUG:
            return Debug()
        if op is Op.TEST:
            name = self.consume_type(TokenType.STRING, "Expected test name").value
            self.consume(Op.COLON, "Expected ':' after test name")
            return Test(name, self.pipeline())
        raise self.error("Unexpected operator", token)

    def arguments(self, op: Op, carry: bool) -> List[ASTNode]:
        minimum, maximum, defaults = BUILTIN_ARITY[op]
        operands: List[ASTNode] = [Empty()] if carry else []

        if len(operands) < maximum:
            if self.match(Op.LEFT_PAREN):
                if not self.check(Op.RIGHT_PAREN):
                    operands.append(self.expression())
                    while self.match(Op.COMMA):
                        operands.append(self.expression())
                self.consume(Op.RIGHT_PAREN, "Expected ')' after arguments")
            elif self.starts_operand():
                operands.append(self.unary() if carry else self.expression())

        if not minimum <= len(operands) <= maximum:
            raise self.error(f"'{op.name.lower()}' takes {minimum} to {maximum} operands, got {len(operands)}",
                             self.previous())
        missing = maximum - len(operands)
        if missing:
            operands.extend(Literal(value) for value in defaults[len(defaults) - missing:])
        return operands

    def if_chain(self) -> If:
        condition = self.expression()
        self.consume(Op.COLON, "Expected ':' after condition")
        then_branch = self.pipeline()

        elifs: List[Tuple[ASTNode, ASTNode]] = []
        while self.match(Op.ELSE_IF):
            elif_condition = self.expression()
            self.consume(Op.COLON, "Expected ':' after condition")
            elifs.append((elif_condition, self.pipeline()))

        else_branch = None
        if self.match(Op.ELSE):
            self.consume(Op.COLON, "Expected ':' after '◆'")
            else_branch = self.pipeline()

        return If(condition, then_branch, elifs, else_branch)

    def loop(self) -> Loop:
        condition = None
        if not self.check(Op.COLON):
            condition = self.expression()
        self.consume(Op.COLON, "Expected ':' before loop body")
        return Loop(condition, self.pipeline())

    def for_each(self, carry: bool) -> ForEach:
        binding = DEFAULT_BINDING
        if self.check_type(TokenType.IDENTIFIER):
            binding = self.advance().value
        if carry:
            collection = Empty()
        else:
            self.consume(Op.IN, "Expected '∈' after loop variable")
            collection = self.expression()
        self.consume(Op.COLON, "Expected ':' before loop body")
        return ForEach(binding, collection, self.pipeline())

    def retry(self) -> Retry:
        count = DEFAULT_RETRIES
        if self.check_type(TokenType.NUMBER):
            token = self.advance()
            if not token.value.is_integer() or not 1 <= token.value <= 255:
                raise self.error("Retry count must be a whole number from 1 to 255", token)
            count = int(token.value)
        self.consume(Op.COLON, "Expected ':' before retry body")
        return Retry(count, self.pipeline())

def parse(source: str) -> ASTNode:
    return Parser(tokenize(source)).parse()
