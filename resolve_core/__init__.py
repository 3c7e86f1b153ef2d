"""
ResolveSuite Core

Multi-tenant complaint management with a configurable workflow engine:
stage graphs, per-complaint workflow instances, automated stage actions
and SLA-driven auto-progression.
"""

__version__ = "1.0.0"
