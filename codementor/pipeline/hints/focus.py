"""
Context focusing.

Trims the submission and the reference test down to what matters for one
failing test before either goes into a hint prompt: the function the test
exercises (or the first class, truncated), the body of the failing test, and
the value the test expects.
"""

import ast
import logging
import re
import textwrap
from typing import Optional, Set, List, Iterable

from .hint_types import HintContext

logger = logging.getLogger(__name__)

DEFAULT_EXERCISE_CONTEXT = "The learner must implement the behaviour checked by the reference tests."
TRUNCATION_MARKER = "# ... (truncated)"

ASSERTION_HELPERS = frozenset({
    "assertEqual", "assertEquals", "assertNotEqual", "assertTrue", "assertFalse",
    "assertIs", "assertIsNot", "assertIsNone", "assertIsNotNone", "assertIn", "assertNotIn",
    "assertIsInstance", "assertNotIsInstance", "assertRaises", "assertRaisesRegex",
    "assertWarns", "assertAlmostEqual", "assertNotAlmostEqual", "assertGreater",
    "assertGreaterEqual", "assertLess", "assertLessEqual", "assertRegex", "assertNotRegex",
    "assertCountEqual", "assertListEqual", "assertDictEqual", "assertTupleEqual",
    "assertSetEqual", "assertSequenceEqual", "assertMultiLineEqual",
    "fail", "subTest", "skipTest", "raises", "approx",
})
EQUALITY_HELPERS = ("assertEqual", "assertEquals")

# used only when the test text cannot be parsed
_ASSERT_EQUAL_RE = re.compile(r"assertEquals?\(([^,]+),\s*([^)]+)\)")


def _parse(source: Optional[str]) -> Optional[ast.Module]:
    if not source:
        return None
    try:
        return ast.parse(source)
    except (SyntaxError, ValueError):
        return None


def _node_source(source: str, node: ast.AST) -> str:
    lines = source.splitlines()
    start = min([node.lineno] + [d.lineno for d in getattr(node, "decorator_list", [])])
    return textwrap.dedent("\n".join(lines[start - 1:node.end_lineno]))


def _function_nodes(tree: ast.Module) -> Iterable[ast.AST]:
    """Top-level functions and methods of top-level classes, in source order."""
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            yield node
        elif isinstance(node, ast.ClassDef):
            for item in node.body:
                if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef)):
                    yield item


def _in_source_order(nodes: Iterable[ast.AST]) -> List[ast.AST]:
    return sorted(nodes, key=lambda n: (n.lineno, n.col_offset))


def first_class_source(source: str) -> str:
    """The first class of the module, or the whole module when it declares none."""
    tree = _parse(source)
    if tree is None:
        return source
    for node in tree.body:
        if isinstance(node, ast.ClassDef):
            return _node_source(source, node)
    return source


def defined_functions(source: str) -> Set[str]:
    tree = _parse(source)
    if tree is None:
        return set()
    return {node.name for node in _function_nodes(tree)}


def extract_function(source: str, name: str) -> Optional[str]:
    """Full source of the first function or method called `name`."""
    tree = _parse(source)
    if tree is None:
        return None
    for node in _function_nodes(tree):
        if node.name == name:
            return _node_source(source, node)
    return None


def find_test_source(test_source: str, test_name: str) -> Optional[str]:
    """Source of one test, named either `Class.method` or `function`."""
    tree = _parse(test_source)
    if tree is None:
        return None
    owner, _, method = test_name.rpartition(".")
    for node in tree.body:
        if owner and isinstance(node, ast.ClassDef) and node.name == owner:
            for item in node.body:
                if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef)) and item.name == method:
                    return _node_source(test_source, item)
        elif not owner and isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == method:
            return _node_source(test_source, node)
    return None


def infer_target(test_body: Optional[str], defined: Set[str]) -> Optional[str]:
    """
    Infers which submission function a failing test exercises.

    First `receiver.name(` call whose name is not an assertion helper and is
    defined in the submission, else the first bare call to such a function.
    """
    tree = _parse(test_body)
    if tree is None or not defined:
        return None
    calls = _in_source_order(n for n in ast.walk(tree) if isinstance(n, ast.Call))
    for call in calls:
        func = call.func
        if isinstance(func, ast.Attribute) and func.attr not in ASSERTION_HELPERS and func.attr in defined:
            return func.attr
    for call in calls:
        func = call.func
        if isinstance(func, ast.Name) and func.id not in ASSERTION_HELPERS and func.id in defined:
            return func.id
    return None


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit]
    newline = cut.rfind("\n")
    if newline > limit // 2:
        cut = cut[:newline]
    return f"{cut.rstrip()}\n{TRUNCATION_MARKER}"


def focus_submission(source: str, target: Optional[str], limit: int) -> str:
    if target:
        excerpt = extract_function(source, target)
        if excerpt is not None:
            return truncate(excerpt, limit)
    return truncate(first_class_source(source), limit)


def extract_expectation(test_body: Optional[str]) -> str:
    """`assertEqual(a, b)` or `assert a == b` -> "a should equal b"; empty when neither is present."""
    if not test_body:
        return ""
    tree = _parse(test_body)
    if tree is None:
        match = _ASSERT_EQUAL_RE.search(test_body)
        return f"{match.group(1).strip()} should equal {match.group(2).strip()}" if match else ""

    candidates = _in_source_order(n for n in ast.walk(tree) if isinstance(n, (ast.Call, ast.Assert)))
    for node in candidates:
        if isinstance(node, ast.Call):
            func = node.func
            name = func.attr if isinstance(func, ast.Attribute) else getattr(func, "id", None)
            if name in EQUALITY_HELPERS and len(node.args) >= 2:
                return f"{ast.unparse(node.args[0])} should equal {ast.unparse(node.args[1])}"
        else:
            test = node.test
            if isinstance(test, ast.Compare) and len(test.ops) == 1 and isinstance(test.ops[0], ast.Eq):
                return f"{ast.unparse(test.left)} should equal {ast.unparse(test.comparators[0])}"
    return ""


def detect_logic_issues(function_source: Optional[str]) -> str:
    """Cheap static observations about an unfinished function (empty body, constant return, TODO)."""
    tree = _parse(function_source)
    if tree is None or not tree.body or not isinstance(tree.body[0], (ast.FunctionDef, ast.AsyncFunctionDef)):
        return ""
    body = list(tree.body[0].body)
    if body and isinstance(body[0], ast.Expr) and isinstance(body[0].value, ast.Constant) and isinstance(body[0].value.value, str):
        body = body[1:]

    issues = []
    if all(isinstance(s, ast.Pass) or (isinstance(s, ast.Expr) and isinstance(s.value, ast.Constant) and s.value.value is Ellipsis) for s in body):
        issues.append("The function body is empty.")
    elif len(body) == 1 and isinstance(body[0], ast.Return) and (body[0].value is None or isinstance(body[0].value, ast.Constant)):
        value = "None" if body[0].value is None else repr(body[0].value.value)
        issues.append(f"The function always returns {value} instead of computing a result.")

    for node in ast.walk(tree):
        if isinstance(node, ast.Raise) and node.exc is not None:
            exc = node.exc.func if isinstance(node.exc, ast.Call) else node.exc
            if isinstance(exc, ast.Name) and exc.id == "NotImplementedError":
                issues.append("The function is not implemented yet.")
                break
    if "TODO" in function_source:
        issues.append("The code still contains a TODO marker.")
    return " ".join(issues)


def build_hint_context(test_name: str, failure_message: Optional[str], submission_source: str, test_source: str,
                       problem_statement: str = "", concepts: Iterable[str] = (),
                       excerpt_limit: int = 2000, test_excerpt_limit: int = 600) -> HintContext:
    test_body = find_test_source(test_source, test_name)
    target = infer_target(test_body, defined_functions(submission_source))
    logger.debug(f"Focused hint context for {test_name}: target={target!r}")

    return HintContext(
        test_name=test_name,
        failure_message=failure_message or "",
        focused_submission_excerpt=focus_submission(submission_source, target, excerpt_limit),
        truncated_reference_test=truncate(test_body or test_source, test_excerpt_limit),
        exercise_context=(problem_statement or "").strip() or DEFAULT_EXERCISE_CONTEXT,
        expectation=extract_expectation(test_body),
        detected_issue=detect_logic_issues(extract_function(submission_source, target)) if target else "",
        concepts=tuple(concepts),
    )
