"""
Approval Kernel

A transactional approval workflow engine with:
- Reusable workflow definitions (sequential, parallel, any-one)
- Approver resolution from roles, users and entity context
- Atomic, race-safe decision application
- Time-based auto-approval, reminders and escalation
- Append-only, hash-chained approval history
"""

__version__ = "0.1.0"
