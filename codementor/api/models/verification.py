"""
API models for the verification and hint endpoints.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional

from codementor.pipeline.verification.verification_types import ExerciseDefinition, VerificationReport
from .common import APIResponse

# Request Models
class VerifyRequest(BaseModel):
    """One submission to verify against an exercise's reference tests."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "exerciseId": "even-sum",
                "exercise": {
                    "starterCode": "def sum_even(numbers):\n    return 0\n",
                    "referenceTestSource": "import unittest\n\nclass TestEvenSum(unittest.TestCase):\n    def test_basic(self):\n        self.assertEqual(sum_even([1, 2, 3, 4, 5, 6]), 12)\n",
                    "problemStatement": "Return the sum of the even numbers in a list.",
                    "concepts": ["loops", "conditionals"]
                },
                "code": "def sum_even(numbers):\n    return sum(n for n in numbers if n % 2 == 0)\n"
            }
        },
    )

    exercise_id: Optional[str] = Field(None, description="Identifier of the exercise")
    exercise: ExerciseDefinition = Field(..., description="Exercise definition supplied by the caller")
    code: str = Field(..., description="The learner's submitted source")

class HintRequest(BaseModel):
    """Request for a standalone hint on one failing test."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    test_name: str = Field(..., description="Name of the failing test")
    test_code: str = Field("", description="Reference test source")
    student_code: str = Field(..., description="The learner's submitted source")
    error_message: Optional[str] = Field(None, description="Failure message of the test")
    problem_statement: Optional[str] = Field(None, description="Exercise problem statement")

# Response Models
class VerificationResponse(APIResponse):
    """Response after verifying a submission."""
    data: Optional[VerificationReport] = None

class HintResponse(BaseModel):
    hint: str = Field(..., description="Short, code-free hint")
