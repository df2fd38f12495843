#!/usr/bin/env python3
"""
Aether Command Line Tests
"""

import argparse
import io
import os
import shutil
import tempfile
import unittest
import sys
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest import mock

# Add src directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from aether import __version__
from aether.bytecode import MAGIC
from aether.cli import (ENV_MAX_ITERATIONS, default_max_iterations, halt_exit_code, main,
                        positive_int)
from aether.interpreter import DEFAULT_MAX_ITERATIONS

EXAMPLES = Path(__file__).parent.parent / 'examples'

class TestCLI(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmp)

    def write(self, name, source):
        path = os.path.join(self.tmp, name)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(source)
        return path

    def main(self, *argv):
        """Run the CLI; returns (exit code, stdout, stderr)"""
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main(list(argv))
        return code, out.getvalue(), err.getvalue()

    def test_run(self):
        code, out, _ = self.main('run', str(EXAMPLES / 'hello.ae'))
        self.assertEqual(code, 0)
        self.assertEqual(out, "Hello, world\n")

    def test_run_on_vm_with_result(self):
        path = self.write('sum.ae', '[1, 5, 10] ⇢ ∃ > 3 ⇢ ∑')
        code, out, _ = self.main('run', '--vm', '--result', path)
        self.assertEqual(code, 0)
        self.assertEqual(out, "15\n")

    def test_compile_and_exec(self):
        source = str(EXAMPLES / 'grades.ae')
        out_path = os.path.join(self.tmp, 'grades.aeb')
        code, out, _ = self.main('compile', source, '-o', out_path)
        self.assertEqual(code, 0)
        self.assertTrue(out.startswith(f"Wrote {out_path}"))
        self.assertTrue(Path(out_path).read_bytes().startswith(MAGIC))

        code, out, _ = self.main('exec', out_path)
        self.assertEqual(code, 0)
        self.assertEqual(out.splitlines(), ["Excellent", "Good", "Needs Improvement"])

    def test_compile_default_output(self):
        path = self.write('answer.ae', '42')
        self.main('compile', path)
        self.assertTrue(os.path.exists(os.path.join(self.tmp, 'answer.aeb')))

    def test_disassemble(self):
        path = self.write('add.ae', 'x ▷ y ⨠ 1 + 2')
        code, out, _ = self.main('disasm', path)
        self.assertEqual(code, 0)
        self.assertIn("LOAD_VAR", out)
        self.assertIn("('x')", out)
        self.assertEqual(out.splitlines()[-1].split()[1], "END")

        self.main('compile', path)
        code, from_container, _ = self.main('disasm', os.path.join(self.tmp, 'add.aeb'))
        self.assertEqual(from_container, out)

    def test_symbols(self):
        code, out, _ = self.main('symbols')
        self.assertEqual(code, 0)
        self.assertIn('⇢', out)
        self.assertIn('->', out)

    def test_explain(self):
        path = self.write('branch.ae', '◇ x > 1: "a" ◆: "b"')
        code, out, _ = self.main('explain', path)
        self.assertEqual(code, 0)
        self.assertEqual(out.splitlines(), ['if x is greater than 1:', '  "a"', 'else:', '  "b"'])

    def test_version(self):
        code, out, _ = self.main('version')
        self.assertEqual(code, 0)
        self.assertEqual(out, f"Aether {__version__}\n")

    def test_halt_exit_code(self):
        self.assertEqual(self.main('run', self.write('halt.ae', '🛑 3'))[0], 3)
        self.assertEqual(self.main('run', '--vm', self.write('halt.ae', '🛑 "x"'))[0], 2)
        self.assertEqual(halt_exit_code(1.5), 2)
        self.assertEqual(halt_exit_code(0.0), 0)

    def test_runtime_error(self):
        code, _, err = self.main('run', self.write('div.ae', '1 / 0'))
        self.assertEqual(code, 1)
        self.assertEqual(err, "Error: DIVISION_BY_ZERO: Division by zero\n")

        code, _, err = self.main('run', '--vm', self.write('div.ae', '1 / 0'))
        self.assertEqual(code, 1)
        self.assertIn("at offset 18", err)

    def test_syntax_error(self):
        code, _, err = self.main('run', self.write('bad.ae', '(1 +'))
        self.assertEqual(code, 1)
        self.assertIn("Parse error at line 1", err)

    def test_missing_file(self):
        code, _, err = self.main('run', os.path.join(self.tmp, 'missing.ae'))
        self.assertEqual(code, 1)
        self.assertTrue(err.startswith("Error:"))

    def test_source_is_not_utf8(self):
        path = os.path.join(self.tmp, 'latin.ae')
        Path(path).write_bytes('"café"'.encode('latin-1'))
        for command in ('run', 'disasm', 'explain'):
            with self.subTest(command=command):
                code, _, err = self.main(command, path)
                self.assertEqual(code, 1)
                self.assertTrue(err.startswith("Error:"), err)
                self.assertIn("utf-8", err)

    def test_deeply_nested_program(self):
        code, out, _ = self.main('run', '--vm', '--result', self.write('deep.ae', '◇ ✓: ' * 100 + '1'))
        self.assertEqual((code, out), (0, "1\n"))

        code, _, err = self.main('run', self.write('deeper.ae', '(' * 3000 + '1' + ')' * 3000))
        self.assertEqual(code, 1)
        self.assertIn("nested too deeply", err)

    def test_bad_container(self):
        path = os.path.join(self.tmp, 'bad.aeb')
        Path(path).write_bytes(b'nope')
        code, _, err = self.main('exec', path)
        self.assertEqual(code, 1)
        self.assertIn("BAD_MAGIC", err)

    def test_iteration_ceiling_from_environment(self):
        path = self.write('spin.ae', '↻: 1')
        with mock.patch.dict(os.environ, {ENV_MAX_ITERATIONS: '3'}):
            self.assertEqual(default_max_iterations(), 3)
            code, _, err = self.main('run', path)
        self.assertEqual(code, 1)
        self.assertIn("loop exceeded 3 iterations", err)

        code, _, err = self.main('run', '--max-iterations', '2', path)
        self.assertIn("loop exceeded 2 iterations", err)

    def test_bad_environment_ceiling(self):
        with mock.patch.dict(os.environ, {ENV_MAX_ITERATIONS: 'lots'}):
            with self.assertLogs('aether.cli', 'WARNING'):
                self.assertEqual(default_max_iterations(), DEFAULT_MAX_ITERATIONS)

    def test_positive_int(self):
        self.assertEqual(positive_int('7'), 7)
        for text in ('0', '-1', 'x'):
            with self.assertRaises(argparse.ArgumentTypeError):
                positive_int(text)

if __name__ == '__main__':
    unittest.main()
