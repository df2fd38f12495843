#!/usr/bin/env python3
"""
Aether Interpreter Tests
"""

import datetime
import os
import tempfile
import unittest
import sys
from pathlib import Path
from unittest import mock

import requests

# Add src directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from aether.ast_nodes import Literal, Not
from aether.capabilities import DefaultCapabilities, RecordingCapabilities
from aether.errors import AetherRuntimeError, HaltSignal, IterationLimitExceeded, RuntimeErrorKind
from aether.interpreter import DEFAULT_MAX_ITERATIONS, Interpreter
from aether.parser import parse

HASH = "#\ufe0f\u20e3"
VERIFY = "\U0001F6E1\ufe0f"
NESTED_TASKS = "⚡ (⚡ (⚡ (⚡ (⚡ 1 ⇢ ⏳) ⇢ ⏳) ⇢ ⏳) ⇢ ⏳) ⇢ ⏳"

class InterpreterTestCase(unittest.TestCase):

    def run_source(self, source, inputs=None, max_iterations=DEFAULT_MAX_ITERATIONS):
        self.capabilities = RecordingCapabilities(inputs=inputs)
        self.interpreter = Interpreter(self.capabilities, max_iterations)
        return self.interpreter.evaluate(parse(source))

    def assertRuntimeError(self, source, kind, **kwargs):
        with self.assertRaises(AetherRuntimeError) as ctx:
            self.run_source(source, **kwargs)
        self.assertEqual(ctx.exception.kind, kind)
        return ctx.exception

class TestEvaluation(InterpreterTestCase):

    def test_if_else_output(self):
        self.run_source('10 ▷ x ⨠ ◇ x > 5: 📤 "Large" ◆: 📤 "Small"')
        self.assertEqual(self.capabilities.outputs, ["Large"])

    def test_else_if_chain(self):
        result = self.run_source('7 ▷ score ⨠ ◇ score > 8: "Excellent" ◈ score > 5: "Good" ◆: "Needs Improvement"')
        self.assertEqual(result, "Good")

    def test_only_one_branch_runs(self):
        self.run_source('◇ ✓: 📤 1 ◈ ✓: 📤 2 ◆: 📤 3')
        self.assertEqual(self.capabilities.outputs, [1.0])

    def test_if_without_match(self):
        self.assertIsNone(self.run_source('◇ ✗: 1'))

    def test_arithmetic(self):
        self.assertEqual(self.run_source('2 ↑ 3'), 8.0)
        self.assertEqual(self.run_source('16 ⇢ √'), 4.0)
        self.assertAlmostEqual(self.run_source('27 √ 3'), 3.0)
        self.assertEqual(self.run_source('1 + 2 * 3'), 7.0)
        self.assertEqual(self.run_source('3 ▷ y ⨠ 10 ⇢ - y'), 7.0)

    def test_comparisons(self):
        self.assertTrue(self.run_source('0.1 + 0.2 ≈ 0.3'))
        self.assertTrue(self.run_source('[1, 2] ≡ [1, 2]'))
        self.assertFalse(self.run_source('1 ≡ "1"'))
        self.assertTrue(self.run_source('"a" < "b"'))

    def test_truthiness(self):
        self.assertEqual(self.run_source('◇ 0: 1 ◆: 2'), 2.0)
        self.assertEqual(self.run_source('◇ "": 1 ◆: 2'), 2.0)
        self.assertEqual(self.run_source('◇ ∅: 1 ◆: 2'), 2.0)
        self.assertEqual(self.run_source('◇ []: 1 ◆: 2'), 1.0)
        self.assertEqual(self.run_source('◇ "0": 1 ◆: 2'), 1.0)

    def test_logic_short_circuits(self):
        self.assertFalse(self.run_source('✗ ⊗ 📤 1'))
        self.assertTrue(self.run_source('✓ ⊕ 📤 1'))
        self.assertEqual(self.capabilities.outputs, [])

        self.assertTrue(self.run_source('✓ ⊗ 📤 1'))
        self.assertEqual(self.capabilities.outputs, [1.0])
        self.assertFalse(self.run_source('¬ 1'))

    def test_bindings(self):
        self.assertEqual(self.run_source('1 ▷ x ⨠ 2 ▷ x ⨠ x'), 2.0)
        self.assertEqual(self.run_source('5 ▷ x'), 5.0)

    def test_immutable_binding(self):
        self.assertRuntimeError('1 ▷ 🧊 x ⨠ 2 ▷ x', RuntimeErrorKind.IMMUTABLE_VIOLATION)

    def test_undefined_name(self):
        self.assertRuntimeError('missing + 1', RuntimeErrorKind.UNDEFINED_NAME)

    def test_collections(self):
        self.assertEqual(self.run_source('{a: [1, 2]}.a[1]'), 2.0)
        self.assertEqual(self.run_source('[1, 2][-1]'), 2.0)
        self.assertIsNone(self.run_source('{a: 1}.b'))
        self.assertEqual(self.run_source('"abc"[0]'), "a")

    def test_halt(self):
        with self.assertRaises(HaltSignal) as ctx:
            self.run_source('1 ⨠ 🛑 7 ⨠ 📤 1')
        self.assertEqual(ctx.exception.code, 7.0)
        self.assertEqual(self.capabilities.outputs, [])

    def test_deep_nesting(self):
        self.assertEqual(self.run_source('◇ ✓: ' * 100 + '1'), 1.0)
        self.assertEqual(self.run_source('0 ▷ n ⨠ ' + '↻ n < 1: ' * 100 + 'n + 1 ▷ n ⨠ n'), 1.0)
        self.assertEqual(self.run_source(' + '.join(['1'] * 1000)), 1000.0)

    def test_nesting_beyond_the_recursion_limit(self):
        node = Literal(True)
        for _ in range(20_000):
            node = Not(node)
        with self.assertRaises(AetherRuntimeError) as ctx:
            Interpreter(RecordingCapabilities()).evaluate(node)
        self.assertEqual(ctx.exception.kind, RuntimeErrorKind.RECURSION_LIMIT)

    def test_debug_returns_null(self):
        self.assertIsNone(self.run_source('🐛'))

class TestPipelines(InterpreterTestCase):

    def test_filter_and_reduce(self):
        self.assertEqual(self.run_source('[1, 5, 10] ⇢ ∃ > 3 ⇢ ∑'), 15.0)
        self.assertEqual(self.run_source('[1, 2, 3, 4] ⇢ ∃ λ it > 2'), [3.0, 4.0])
        self.assertEqual(self.run_source('[] ⇢ ∑'), 0.0)

    def test_for_each(self):
        self.assertEqual(self.run_source('[1, 2, 3] ⇢ ∀: it * 2'), [2.0, 4.0, 6.0])
        self.assertEqual(self.run_source('∀ c ∈ "ab": c'), ["a", "b"])
        self.assertEqual(self.run_source('∀ k ∈ {b: 1, a: 2}: k'), ["a", "b"])

    def test_lambda_binds_it(self):
        self.assertEqual(self.run_source('5 ⇢ λ it * it'), 25.0)
        self.assertEqual(self.interpreter.env.get('it'), 5.0)

    def test_while_loop(self):
        self.assertEqual(self.run_source('0 ▷ n ⨠ ↻ n < 3: n + 1 ▷ n ⨠ n'), 3.0)

    def test_iteration_ceiling(self):
        with self.assertRaises(IterationLimitExceeded):
            self.run_source('0 ▷ n ⨠ ↻: n + 1 ▷ n', max_iterations=5)
        self.assertEqual(self.interpreter.env.get('n'), 5.0)

    def test_reduce_needs_numbers(self):
        self.assertRuntimeError('["a"] ⇢ ∑', RuntimeErrorKind.TYPE_MISMATCH)

class TestFunctions(InterpreterTestCase):

    def test_call_by_name(self):
        self.assertEqual(self.run_source('ƒ double: x * 2 ⨠ 4 ▷ x ⨠ double'), 8.0)

    def test_definition_returns_null(self):
        self.assertIsNone(self.run_source('ƒ f: 1'))
        self.assertIn('f', self.interpreter.functions)

    def test_variables_shadow_functions(self):
        self.assertEqual(self.run_source('ƒ f: 1 ⨠ 2 ▷ f ⨠ f'), 2.0)

    def test_recursion_limit(self):
        self.assertRuntimeError('ƒ forever: forever ⨠ forever', RuntimeErrorKind.RECURSION_LIMIT)

class TestGuards(InterpreterTestCase):

    def test_failed_guard_stops_sequence(self):
        self.assertEqual(self.run_source('∅ ⁇ "fallback" ⨠ 📤 "after"'), "fallback")
        self.assertEqual(self.capabilities.outputs, [])

    def test_passed_guard_continues(self):
        self.assertEqual(self.run_source('1 ⁇ 0 ⨠ "next"'), "next")

    def test_nested_guard_is_an_expression(self):
        self.assertEqual(self.run_source('(∅ ⁇ 5) + 1'), 6.0)
        self.run_source('◇ ✓: ∅ ⁇ 1 ⨠ 📤 "after"')
        self.assertEqual(self.capabilities.outputs, ["after"])

class TestRecovery(InterpreterTestCase):

    def test_try_rescue(self):
        self.assertEqual(self.run_source('🛡 1 / 0 🩹 -1'), -1.0)
        self.assertIsNone(self.run_source('🛡 1 / 0'))
        self.assertEqual(self.run_source('🛡 2 🩹 -1'), 2.0)

    def test_halt_is_not_rescued(self):
        with self.assertRaises(HaltSignal):
            self.run_source('🛡 🛑 3 🩹 0')

    def test_iteration_limit_is_not_rescued(self):
        with self.assertRaises(IterationLimitExceeded):
            self.run_source('🛡 (↻: 1) 🩹 0', max_iterations=3)

    def test_retry_until_success(self):
        source = '0 ▷ n ⨠ ♻ 3: (n + 1 ▷ n ⨠ ◇ n < 3: 1 / 0 ◆: n)'
        self.assertEqual(self.run_source(source), 3.0)

    def test_retry_exhausted(self):
        source = '0 ▷ n ⨠ ♻ 2: (n + 1 ▷ n ⨠ ◇ n < 3: 1 / 0 ◆: n)'
        self.assertRuntimeError(source, RuntimeErrorKind.DIVISION_BY_ZERO)
        self.assertEqual(self.interpreter.env.get('n'), 2.0)

class TestErrors(InterpreterTestCase):

    def test_type_mismatch(self):
        for source in ('1 + "a"', '1 < "a"', '✓ + 1', '[1] < [2]'):
            self.assertRuntimeError(source, RuntimeErrorKind.TYPE_MISMATCH)

    def test_numeric_errors(self):
        self.assertRuntimeError('1 / 0', RuntimeErrorKind.DIVISION_BY_ZERO)
        self.assertRuntimeError('-4 ⇢ √', RuntimeErrorKind.DOMAIN_ERROR)

    def test_index_errors(self):
        self.assertRuntimeError('[1, 2][5]', RuntimeErrorKind.INDEX_OUT_OF_RANGE)
        self.assertRuntimeError('∅.x', RuntimeErrorKind.NULL_DEREFERENCE)
        self.assertRuntimeError('[1][0.5]', RuntimeErrorKind.TYPE_MISMATCH)
        self.assertRuntimeError('5[0]', RuntimeErrorKind.TYPE_MISMATCH)

    def test_error_message(self):
        error = self.assertRuntimeError('1 / 0', RuntimeErrorKind.DIVISION_BY_ZERO)
        self.assertIsNone(error.offset)
        self.assertEqual(str(error), "DIVISION_BY_ZERO: Division by zero")

class TestCapabilities(InterpreterTestCase):

    def test_input(self):
        inputs = [{"name": "Ada", "age": 36}, "second"]
        self.assertEqual(self.run_source('📥 name', inputs=inputs), "Ada")
        self.assertEqual(self.run_source('📥 ⨠ 📥', inputs=inputs), "second")
        self.assertIsNone(self.run_source('📥'))

    def test_input_numbers_are_floats(self):
        result = self.run_source('📥 age', inputs=[{"age": 36}])
        self.assertIsInstance(result, float)

    def test_json(self):
        self.assertEqual(self.run_source(r'"{\"a\": [1, 2]}" ⇢ J'), {"a": [1.0, 2.0]})
        self.assertRuntimeError('"nope" ⇢ J', RuntimeErrorKind.INVALID_VALUE)

    def test_persist_and_query(self):
        source = '{k: 1, v: "a"} ⇢ 💾 ⨠ {k: 2} ⇢ 💾 ⨠ 🔍 {k: 1}'
        self.assertEqual(self.run_source(source), [{"k": 1.0, "v": "a"}])
        self.assertEqual(len(self.run_source('1 ⇢ 💾 ⨠ 2 ⇢ 💾 ⨠ 🔍 ∅')), 2)

    def test_output_returns_value(self):
        self.assertEqual(self.run_source('3 ⇢ 📤 ⇢ + 1'), 4.0)
        self.assertEqual(self.capabilities.outputs, [3.0])

    def test_async_await(self):
        self.assertEqual(self.run_source('⚡ (2 * 21) ▷ t ⨠ t ⇢ ⏳'), 42.0)

    def test_async_shares_environment(self):
        self.assertEqual(self.run_source('⚡ (5 ▷ y) ▷ t ⨠ ⏳ t ⨠ y'), 5.0)

    def test_await_twice(self):
        self.assertRuntimeError('⚡ 1 ▷ t ⨠ ⏳ t ⨠ ⏳ t', RuntimeErrorKind.INVALID_VALUE)

    def test_await_needs_task(self):
        self.assertRuntimeError('⏳ 1', RuntimeErrorKind.TYPE_MISMATCH)

    def test_async_error_surfaces_on_await(self):
        self.assertRuntimeError('⚡ (1 / 0) ▷ t ⨠ ⏳ t', RuntimeErrorKind.DIVISION_BY_ZERO)

    def test_tasks_nested_deeper_than_the_pool(self):
        capabilities = DefaultCapabilities(workers=4, task_timeout=3)
        try:
            result = Interpreter(capabilities).evaluate(parse(NESTED_TASKS))
        finally:
            capabilities.tasks.shutdown()
        self.assertEqual(result, 1.0)

    def test_assertions(self):
        with self.assertLogs('aether.interpreter', 'INFO') as logs:
            self.assertTrue(self.run_source('🧪 "math": ⚖ 2 + 2 ≡ 4'))
        self.assertIn("test math: passed", logs.output[-1])
        self.assertRuntimeError('⚖ 1 ≡ 2', RuntimeErrorKind.ASSERTION_FAILED)

class TestBuiltins(InterpreterTestCase):

    def test_text(self):
        self.assertEqual(self.run_source('"a,b,c" ⇢ ✂ ","'), ["a", "b", "c"])
        self.assertEqual(self.run_source('"a b" ⇢ ✂'), ["a", "b"])
        self.assertEqual(self.run_source('["a", 1, ✓] ⇢ 🔗 "-"'), "a-1-true")
        self.assertEqual(self.run_source('✱("order 66", "[0-9]+")'), "66")
        self.assertIsNone(self.run_source('✱("none", "[0-9]+")'))

    def test_bad_pattern(self):
        self.assertRuntimeError('✱("x", "(")', RuntimeErrorKind.INVALID_VALUE)

    def test_hash(self):
        self.assertEqual(self.run_source(f'"abc" ⇢ {HASH}'),
                         "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad")

    def test_encrypt_round_trip(self):
        self.assertEqual(self.run_source('🔐("secret", "key") ▷ c ⨠ 🔓(c, "key")'), "secret")
        self.assertRuntimeError('🔐("secret", "key") ▷ c ⨠ 🔓(c, "other")',
                                RuntimeErrorKind.CAPABILITY_ERROR)

    def test_sign_and_verify(self):
        self.assertTrue(self.run_source(f'✍("msg", "k") ▷ s ⨠ {VERIFY}("msg", s, "k")'))
        self.assertFalse(self.run_source(f'✍("msg", "k") ▷ s ⨠ {VERIFY}("other", s, "k")'))

    def test_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp, 'note.txt').as_posix()
            result = self.run_source(f'"hello" ⇢ 🖊 "{path}" ⨠ 🖇("!", "{path}") ⨠ 📖 "{path}"')
            self.assertEqual(result, "hello!")
            self.assertRuntimeError(f'📖 "{path}.missing"', RuntimeErrorKind.CAPABILITY_ERROR)

    def test_env(self):
        with mock.patch.dict(os.environ, {'AETHER_TEST_VAR': 'set'}):
            self.assertEqual(self.run_source('🌍 "AETHER_TEST_VAR"'), "set")
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertIsNone(self.run_source('🌍 "AETHER_TEST_VAR"'))

    def test_log(self):
        self.assertEqual(self.run_source('"note" ⇢ 🪵'), "note")
        self.assertEqual(self.capabilities.logged, ["note"])

    def test_datetime_and_random(self):
        stamp = self.run_source('📅')
        self.assertIsInstance(datetime.datetime.fromisoformat(stamp), datetime.datetime)
        value = self.run_source('🎲')
        self.assertIsInstance(value, float)
        self.assertTrue(0.0 <= value < 1.0)

    def test_operandless_glyph_then_minus(self):
        value = self.run_source('🎲 -1')
        self.assertTrue(-1.0 <= value < 0.0)
        self.assertEqual(self.run_source('📥 -1', inputs=[5]), 4.0)
        self.assertRuntimeError('📅 -1', RuntimeErrorKind.TYPE_MISMATCH)
        self.assertRuntimeError('(🐛 -1)', RuntimeErrorKind.TYPE_MISMATCH)

    def test_http_get(self):
        response = mock.Mock(status_code=200, text='ok')
        with mock.patch.object(requests.Session, 'get', return_value=response) as get:
            result = self.run_source('🌐 "http://example.test/data"')
        self.assertEqual(result, {"status": 200.0, "body": "ok"})
        self.assertEqual(get.call_args[0][0], "http://example.test/data")

    def test_http_failure(self):
        with mock.patch.object(requests.Session, 'get', side_effect=requests.ConnectionError('down')):
            self.assertRuntimeError('🌐 "http://example.test"', RuntimeErrorKind.CAPABILITY_ERROR)

if __name__ == '__main__':
    unittest.main()
