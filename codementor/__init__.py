"""
codementor: submission verification and diagnosis engine.

Compiles a learner's Python submission against an exercise's reference tests,
runs each test in an isolated child interpreter, and attaches short, validated
hints to the failing ones.
"""

__version__ = "1.0.0"
