"""
Text transformation boundary for the emotion jar backend.

Design intent:
- Turn a raw negative note into an affirmation plus a quote.
- Mask every upstream failure with a pre-written fallback pair.
- Keep the visible loading phase at or above a fixed floor duration.
"""
