"""
SchoolGate Test Suite.

This package contains:
- unit/: Unit tests (pure components, no I/O)
- integration/: Integration tests (controller, providers, realtime wiring)
"""
