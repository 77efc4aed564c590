"""
Infrastructure Layer
=====================

Low-level technical concerns shared by every bounded context:
- Logging setup
- Resilient persistence wrapper and read cache
- Notification sinks
"""
