"""
Access to the objects created by the application lifespan.
"""

from codementor.models.manager import ModelManager
from codementor.pipeline.verification.verification import VerificationEngine


def get_model_manager() -> ModelManager:
    """FastAPI dependency to get the model manager from app state."""
    from ..main import app_state
    return app_state["model_manager"]

def get_engine() -> VerificationEngine:
    """FastAPI dependency to get the verification engine from app state."""
    from ..main import app_state
    return app_state["engine"]
