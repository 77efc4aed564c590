"""
Tickets Module
==============

Bounded context for the support ticket lifecycle.

Responsibilities:
- Enforce legal status transitions per actor role
- Persist status changes with compare-and-swap plus an audit row
- Expose ticket reads and history to the HTTP surface
"""
