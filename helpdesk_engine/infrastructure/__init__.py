"""
Infrastructure Layer
====================

Database engine and session management shared by the bounded contexts.
"""
