"""
SLA Monitoring Module
=====================

Bounded context for service level monitoring of support tickets.

Responsibilities:
- Compute resolution due dates from the priority-based SLA policy
- Sweep open tickets on a schedule and materialise their SLA state
- Emit SLAAtRisk / SLABreached intents exactly once per state entered
- Raise backlog and high-volume alerts
- Hot-reload the SLA policy from YAML via watchdog
"""
