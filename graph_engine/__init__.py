"""
Graph Engine - an in-process workflow graph engine.

Build directed graphs of processing steps, validate them before they run,
and execute them with conditional routing, parallel branches, join points
and error-edge recovery.
"""

__version__ = "1.0.0"
