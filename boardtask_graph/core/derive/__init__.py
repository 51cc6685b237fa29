"""Presentation-only attributes derived from the task graph.

Nothing here is persisted. Callers mutate the mirror, call the recompute
entry points, then re-render.
"""
