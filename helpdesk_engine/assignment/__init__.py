"""
Assignment Module
=================

Bounded context for routing tickets to agents.

Responsibilities:
- Offer a ticket to several candidate agents at once
- Let the first acceptance win, cancelling the other offers atomically
- Report tickets nobody is willing to take
"""
