"""
Pydantic models for API request/response schemas.

They are separate from the pipeline types to keep the API boundary explicit;
the verification report itself is returned as-is.
"""
