"""
Rehearsal Scheduler.

Band rehearsal scheduling: recurring rehearsal series, conflict detection
across bands, venues and members, availability quorum and attendance
reconciliation.
"""

__version__ = "0.1.0"
