"""
Shared Kernel Module
====================

This module contains shared infrastructure and domain elements used across
all bounded contexts (tickets, SLA monitoring, assignment).

Architecture Pattern: Modular Monolith
- Each module (tickets, sla, assignment) is a bounded context
- Shared kernel contains only generic infrastructure, the actor identity
  and the notification intent vocabulary

DO NOT add lifecycle, SLA or assignment rules to the shared kernel.
"""

__version__ = "1.0.0"
