"""
Shared API Layer
================

FastAPI dependencies, middleware and exception handlers used by every router.
"""
