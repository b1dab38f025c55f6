"""
Ticket Timer Module
===================

Bounded context for the ticket inactivity-escalation policy.

Responsibilities:
- Attribute each ticket channel to its requester
- Start a debounced countdown when staff write in a ticket
- Remind the requester periodically, then alert staff
- Stop on requester reply or manual command
- Rebuild running countdowns after a process restart
"""
