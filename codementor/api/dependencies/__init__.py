"""
FastAPI dependencies for request processing.

Dependencies hand the long-lived objects created at startup (the model
manager and the verification engine) to the endpoints.
"""
