"""
Aether command line
Main entry point for the evaluator, compiler and VM
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional

from . import __version__
from .bytecode import MAGIC, BytecodeProgram, decode, disassemble, encode
from .capabilities import Capabilities, DefaultCapabilities
from .compiler import Compiler
from .errors import AetherError, HaltSignal
from .explainer import explain
from .interpreter import DEFAULT_MAX_ITERATIONS, Interpreter
from .parser import parse
from .repl import REPL
from .symbols import describe
from .values import NUMBER, represent, type_name
from .vm import VM

logger = logging.getLogger(__name__)

ENV_MAX_ITERATIONS = 'AETHER_MAX_ITERATIONS'
BYTECODE_SUFFIX = '.aeb'

def positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{text!r} is not an integer")
    if value < 1:
        raise argparse.ArgumentTypeError(f"{value} is not positive")
    return value

def default_max_iterations() -> int:
    raw = os.environ.get(ENV_MAX_ITERATIONS)
    if raw is None:
        return DEFAULT_MAX_ITERATIONS
    try:
        return positive_int(raw)
    except argparse.ArgumentTypeError as exc:
        logger.warning("ignoring %s: %s", ENV_MAX_ITERATIONS, exc)
        return DEFAULT_MAX_ITERATIONS

def halt_exit_code(code: Any) -> int:
    if type_name(code) == NUMBER and code.is_integer():
        return int(code)
    return 2

def load_source(path: str) -> str:
    with open(path, 'r', encoding='utf-8') as f:
        return f.read()

def load_program(path: str) -> BytecodeProgram:
    """Decode a container, or compile source text"""
    data = Path(path).read_bytes()
    if data.startswith(MAGIC) or path.endswith(BYTECODE_SUFFIX):
        return decode(data)
    return Compiler().compile(parse(data.decode('utf-8')))

def run_source(source: str,
               use_vm: bool = False,
               capabilities: Optional[Capabilities] = None,
               max_iterations: int = DEFAULT_MAX_ITERATIONS,
               trace: bool = False,
               profile: bool = False,
               debug: bool = False) -> Any:
    ast = parse(source)
    if use_vm:
        vm = VM(capabilities, max_iterations, trace=trace, profile=profile)
        try:
            return vm.run(Compiler().compile(ast))
        finally:
            if profile:
                print('\n'.join(vm.profile_report()), file=sys.stderr)
    return Interpreter(capabilities, max_iterations, debug).evaluate(ast)

# Commands

def cmd_run(args) -> int:
    capabilities = DefaultCapabilities()
    try:
        result = run_source(load_source(args.file), args.vm, capabilities, args.max_iterations,
                            args.trace, args.profile, args.debug)
    finally:
        capabilities.tasks.shutdown()
    if args.result:
        print(represent(result))
    return 0

def cmd_compile(args) -> int:
    program = Compiler().compile(parse(load_source(args.file)))
    out = args.out or str(Path(args.file).with_suffix(BYTECODE_SUFFIX))
    data = encode(program)
    Path(out).write_bytes(data)
    print(f"Wrote {out} ({len(data)} bytes, {len(program.constants)} constants)")
    return 0

def cmd_exec(args) -> int:
    program = decode(Path(args.file).read_bytes())
    capabilities = DefaultCapabilities()
    vm = VM(capabilities, args.max_iterations, trace=args.trace, profile=args.profile)
    try:
        result = vm.run(program)
    finally:
        capabilities.tasks.shutdown()
        if args.profile:
            print('\n'.join(vm.profile_report()), file=sys.stderr)
    if args.result:
        print(represent(result))
    return 0

def cmd_disasm(args) -> int:
    program = load_program(args.file)
    print(f"; {len(program.constants)} constants, {len(program.code)} bytes of code")
    for number, constant in enumerate(program.constants):
        print(f";   {number:>3}: {constant!r}")
    for instruction in disassemble(program):
        print(instruction.format(program))
    return 0

def cmd_symbols(args) -> int:
    print(describe())
    return 0

def cmd_explain(args) -> int:
    print(explain(parse(load_source(args.file))))
    return 0

def cmd_repl(args) -> int:
    REPL(debug=args.debug, use_vm=args.vm, max_iterations=args.max_iterations).run()
    return 0

def cmd_version(args) -> int:
    print(f"Aether {__version__}")
    return 0

def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--debug', action='store_true', help='Enable debug logging')

    engine = argparse.ArgumentParser(add_help=False)
    engine.add_argument('--max-iterations', type=positive_int, default=default_max_iterations(),
                        help=f'Loop iteration ceiling (default from ${ENV_MAX_ITERATIONS} or {DEFAULT_MAX_ITERATIONS})')
    engine.add_argument('--trace', action='store_true', help='Log every VM instruction')
    engine.add_argument('--profile', action='store_true', help='Count executed opcodes')
    engine.add_argument('--result', action='store_true', help='Print the program result')

    parser = argparse.ArgumentParser(prog='aether', description='Aether glyph language')
    parser.add_argument('--version', action='version', version=f'Aether {__version__}')
    sub = parser.add_subparsers(dest='cmd', help='subcommands')

    p_run = sub.add_parser('run', parents=[common, engine], help='Run an .ae source file')
    p_run.add_argument('file')
    p_run.add_argument('--vm', action='store_true', help='Compile and run on the bytecode VM')
    p_run.set_defaults(func=cmd_run)

    p_compile = sub.add_parser('compile', parents=[common], help='Compile .ae source to an .aeb container')
    p_compile.add_argument('file')
    p_compile.add_argument('-o', '--out', help='Output path (default: FILE with .aeb suffix)')
    p_compile.set_defaults(func=cmd_compile)

    p_exec = sub.add_parser('exec', parents=[common, engine], help='Run an .aeb container')
    p_exec.add_argument('file')
    p_exec.set_defaults(func=cmd_exec)

    p_disasm = sub.add_parser('disasm', parents=[common], help='Disassemble an .ae or .aeb file')
    p_disasm.add_argument('file')
    p_disasm.set_defaults(func=cmd_disasm)

    p_symbols = sub.add_parser('symbols', parents=[common], help='List the glyph table')
    p_symbols.set_defaults(func=cmd_symbols)

    p_explain = sub.add_parser('explain', parents=[common], help='Render a program as readable pseudo-code')
    p_explain.add_argument('file')
    p_explain.set_defaults(func=cmd_explain)

    p_repl = sub.add_parser('repl', parents=[common, engine], help='Start the interactive REPL')
    p_repl.add_argument('--vm', action='store_true', help='Start with VM mode on')
    p_repl.set_defaults(func=cmd_repl)

    p_version = sub.add_parser('version', parents=[common], help='Print the version')
    p_version.set_defaults(func=cmd_version)

    return parser

def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    # no command starts the REPL
    args = parser.parse_args(argv or ['repl'])

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')
    if getattr(args, 'trace', False):
        logging.getLogger('aether.vm').setLevel(logging.DEBUG)

    try:
        return args.func(args)
    except HaltSignal as e:
        logger.debug("halted: %s", e)
        return halt_exit_code(e.code)
    except AetherError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

if __name__ == '__main__':
    sys.exit(main())
