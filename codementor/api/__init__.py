"""
HTTP surface for the verification engine.
"""
