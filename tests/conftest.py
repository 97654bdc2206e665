"""
Shared fixtures: the even-sum exercise used throughout the verification and
hint tests, plus a scripted text generator standing in for the model.
"""

import sys
import textwrap

import pytest

from codementor.pipeline.verification.verification_types import VerificationRequest, VerificationSettings


EVEN_SUM_TESTS = textwrap.dedent('''
    import unittest
    from solution import EvenSum


    class TestEvenSum(unittest.TestCase):
        def test_basic(self):
            self.assertEqual(EvenSum().sum([1, 2, 3, 4, 5, 6]), 12)

        def test_complex(self):
            self.assertEqual(EvenSum().sum([10, 15, 20, -4]), 26)

        def test_edge_empty(self):
            self.assertEqual(EvenSum().sum([]), 0)
''').lstrip()

EVEN_SUM_CORRECT = textwrap.dedent('''
    class EvenSum:
        def sum(self, numbers):
            return sum(n for n in numbers if n % 2 == 0)
''').lstrip()

EVEN_SUM_CONSTANT = textwrap.dedent('''
    class EvenSum:
        def sum(self, numbers):
            return 0
''').lstrip()

EVEN_SUM_SYNTAX_ERROR = textwrap.dedent('''
    class EvenSum:
        def sum(self, numbers)
            return 0
''').lstrip()

AVERAGE_TESTS = textwrap.dedent('''
    import unittest
    from solution import Stats


    class TestStats(unittest.TestCase):
        def test_average(self):
            self.assertEqual(Stats().average([2, 4]), 3)

        def test_average_empty(self):
            self.assertEqual(Stats().average([]), 0)

        def test_total(self):
            self.assertEqual(Stats().total([1, 2, 3]), 6)
''').lstrip()

AVERAGE_SUBMISSION = textwrap.dedent('''
    class Stats:
        def average(self, values):
            return sum(values) / len(values)

        def total(self, values):
            return sum(values)
''').lstrip()

GOOD_HINT = '{"problem": "Your method ignores its input.", "fix": "Loop over the numbers and keep the even ones.", "snippet": ""}'


class ScriptedGenerator:
    """Returns queued replies in order; an Exception instance in the queue is raised instead."""

    def __init__(self, *replies, default=GOOD_HINT):
        self.replies = list(replies)
        self.default = default
        self.prompts = []

    def generate(self, prompt, max_tokens):
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def even_sum_request():
    def build(submission=EVEN_SUM_CONSTANT, tests=EVEN_SUM_TESTS, **extra):
        return VerificationRequest(
            submission_source=submission,
            reference_test_source=tests,
            exercise_id=extra.pop("exercise_id", "even-sum"),
            problem_statement=extra.pop("problem_statement", "Return the sum of the even numbers in a list."),
            concepts=extra.pop("concepts", ["loops", "conditionals"]),
        )
    return build


@pytest.fixture
def settings(tmp_path):
    """Engine settings that run the child harness on the current interpreter."""
    return VerificationSettings(
        interpreter=sys.executable,
        compile_timeout=30.0,
        test_timeout=5.0,
        memory_limit_mb=1024,
        workspace_root=tmp_path / "runs",
        hint_budget_s=30.0,
    )


@pytest.fixture
def scripted_generator():
    return ScriptedGenerator
