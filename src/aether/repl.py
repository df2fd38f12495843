"""
Aether REPL
Interactive Read-Eval-Print Loop
"""

from typing import Any, Optional

from .ast_nodes import pretty_print_ast
from .capabilities import Capabilities
from .compiler import Compiler
from .environment import Environment
from .errors import AetherRuntimeError, BytecodeError, HaltSignal, LexError, ParseError
from .interpreter import DEFAULT_MAX_ITERATIONS, Interpreter
from .lexer import Lexer, TokenType
from .parser import Parser
from .symbols import Op, describe
from .values import display, represent
from .vm import VM

_OPENERS = {Op.LEFT_PAREN: Op.RIGHT_PAREN, Op.LEFT_BRACKET: Op.RIGHT_BRACKET, Op.LEFT_BRACE: Op.RIGHT_BRACE}

HELP = """
Aether REPL Help

Commands:
  help          - Show this help
  exit, quit    - Exit the REPL
  symbols       - List every glyph and what it does
  vm on/off     - Run lines on the bytecode VM instead of the evaluator
  debug on/off  - Show tokens and AST, trace VM instructions

Variables and functions persist between lines. Functions defined while the
VM is on last for that line only.

Examples:
  aether> 42 ▷ answer
  42
  aether> answer ⇢ + 1
  43
  aether> ƒ greet: "hello" ⇢ 📤
  null
  aether> greet
  hello
  "hello"
  aether> ◇ answer > 40: "large" ◆: "small"
  "large"
"""

class REPL:
    def __init__(self,
                 debug: bool = False,
                 use_vm: bool = False,
                 capabilities: Optional[Capabilities] = None,
                 max_iterations: int = DEFAULT_MAX_ITERATIONS):
        self.debug = debug
        self.use_vm = use_vm
        self.env = Environment()
        self.interpreter = Interpreter(capabilities, max_iterations, debug, self.env)
        self.vm = VM(self.interpreter.capabilities, max_iterations, trace=debug, environment=self.env)
        self.multiline_input = ""
        self.prompt = "aether> "
        self.continuation_prompt = "...     "

    def run(self):
        """Start the REPL"""
        from . import __version__
        print(f"Aether {__version__}")
        print("Type 'help' for help, 'exit' to quit.")
        print()

        while True:
            try:
                if self.multiline_input:
                    line = input(self.continuation_prompt)
                else:
                    line = input(self.prompt)

                if not self.multiline_input and self.handle_command(line.strip()):
                    if line.strip() in ('exit', 'quit'):
                        print("Goodbye!")
                        break
                    continue

                self.multiline_input += line + "\n"

                if self.is_complete_input(self.multiline_input):
                    source = self.multiline_input.strip()
                    self.multiline_input = ""
                    if source:
                        self.evaluate_input(source)

            except KeyboardInterrupt:
                print("\nKeyboardInterrupt")
                self.multiline_input = ""
            except EOFError:
                print("\nGoodbye!")
                break

    def handle_command(self, command: str) -> bool:
        """Run a REPL command; False when the line is program text"""
        parts = command.split()
        if not parts:
            return False
        if command in ('exit', 'quit'):
            return True
        if command == 'help':
            print(HELP)
            return True
        if command == 'symbols':
            print(describe())
            return True
        if parts[0] in ('vm', 'debug') and len(parts) <= 2:
            if len(parts) == 2 and parts[1] not in ('on', 'off'):
                return False
            if parts[0] == 'vm':
                if len(parts) == 2:
                    self.use_vm = parts[1] == 'on'
                print(f"VM mode {'enabled' if self.use_vm else 'disabled'}")
            else:
                if len(parts) == 2:
                    self.set_debug(parts[1] == 'on')
                print(f"Debug mode {'enabled' if self.debug else 'disabled'}")
            return True
        return False

    def set_debug(self, enabled: bool):
        self.debug = enabled
        self.interpreter.debug = enabled
        self.vm.trace = enabled

    def is_complete_input(self, input_text: str) -> bool:
        """Check if the input has no unclosed brackets"""
        try:
            tokens = Lexer(input_text).tokenize()
        except LexError:
            # malformed but complete; the error is reported on evaluation
            return True

        depth = 0
        for token in tokens:
            if token.type != TokenType.GLYPH:
                continue
            if token.value in _OPENERS:
                depth += 1
            elif token.value in _OPENERS.values():
                depth -= 1
        return depth <= 0

    def evaluate_input(self, input_text: str) -> Any:
        """Evaluate the input, print and return the result"""
        try:
            tokens = Lexer(input_text).tokenize()

            if self.debug:
                print("Tokens:")
                for token in tokens:
                    if token.type != TokenType.EOF:
                        print(f"  {token.describe()}")
                print()

            ast = Parser(tokens).parse()

            if self.debug:
                print("AST:")
                print(pretty_print_ast(ast))
                print()

            if self.use_vm:
                result = self.vm.run(Compiler().compile(ast))
            else:
                result = self.interpreter.evaluate(ast)

            self.print_result(result)
            return result

        except (LexError, ParseError) as e:
            print(f"Syntax Error: {e}")
        except AetherRuntimeError as e:
            print(f"Runtime Error: {e}")
        except HaltSignal as e:
            print(f"Halted with code {display(e.code)}")
        except BytecodeError as e:
            print(f"Bytecode Error: {e}")
        return None

    def print_result(self, result: Any):
        print(represent(result))
