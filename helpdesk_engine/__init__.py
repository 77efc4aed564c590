"""
Helpdesk Engine
===============

Ticket lifecycle, agent assignment and SLA monitoring for a helpdesk.
"""

__version__ = "1.0.0"
