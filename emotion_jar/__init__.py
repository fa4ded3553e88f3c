"""
Emotion jar backend package.

Design intent:
- Serve the journaling flow (write, throw, reveal, keep) to a browser front end.
- Keep domain modules (flow/transform/internal_core) independent from the HTTP layer.
"""
