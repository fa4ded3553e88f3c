"""
View flow boundary for the emotion jar backend.

Design intent:
- Own the per-session screen phase and its allowed transitions.
- Drive cosmetic pacing through named timed steps on one scheduler.
- Keep presentation out; callers render whatever phase is reported.
"""
