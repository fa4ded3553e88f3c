"""
API orchestration boundary for the emotion jar backend.

Design intent:
- Expose thin, typed endpoints for session flow, notes and transformation.
- Keep request validation explicit and failure modes predictable.
- Orchestrate modules without embedding flow logic in routers.
"""
