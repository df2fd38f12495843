#!/usr/bin/env python3
"""
Aether Integration Tests
Runs the programs under examples/ on both engines
"""

import unittest
import sys
from pathlib import Path

# Add src directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from aether.bytecode import decode, encode
from aether.capabilities import RecordingCapabilities
from aether.compiler import Compiler
from aether.interpreter import Interpreter
from aether.parser import parse
from aether.vm import VM

EXAMPLES = Path(__file__).parent.parent / 'examples'

class TestIntegration(unittest.TestCase):

    def load(self, filename):
        with open(EXAMPLES / filename, 'r', encoding='utf-8') as f:
            return f.read()

    def run_example(self, filename):
        """Run an example on the evaluator and on the VM (through the container); return both outputs"""
        source = self.load(filename)

        evaluator = RecordingCapabilities()
        expected = Interpreter(evaluator).evaluate(parse(source))

        machine = RecordingCapabilities()
        program = decode(encode(Compiler().compile(parse(source))))
        actual = VM(machine).run(program)

        self.assertEqual(expected, actual)
        self.assertEqual(evaluator.outputs, machine.outputs)
        return evaluator.outputs, expected

    def test_hello_example(self):
        outputs, _ = self.run_example('hello.ae')
        self.assertEqual(outputs, ["Hello, world"])

    def test_grades_example(self):
        outputs, result = self.run_example('grades.ae')
        self.assertEqual(outputs, ["Excellent", "Good", "Needs Improvement"])
        self.assertEqual(result, outputs)

    def test_pipeline_example(self):
        outputs, _ = self.run_example('pipeline.ae')
        self.assertEqual(outputs, [49.0, "a-b-c"])

    def test_recovery_example(self):
        outputs, result = self.run_example('recovery.ae')
        self.assertEqual(outputs, [3.0, "no such element"])
        self.assertEqual(result, "stopped early")

    def test_checks_example(self):
        outputs, _ = self.run_example('checks.ae')
        self.assertEqual(outputs, ["1"])

    def test_every_example_parses(self):
        for path in sorted(EXAMPLES.glob('*.ae')):
            with self.subTest(example=path.name):
                parse(path.read_text(encoding='utf-8'))

if __name__ == '__main__':
    unittest.main()
