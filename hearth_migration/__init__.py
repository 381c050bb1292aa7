"""
Dual-write migration layer for the Hearth family-health backend.

Lets repository methods run against the legacy relational store and the
Supabase table store side by side, compares what each returns, and keeps
the switch between them behind runtime feature flags.
"""

__version__ = "0.1.0"
