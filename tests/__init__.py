"""
ConfDB Test Suite.

This package contains:
- unit/: Unit tests (SQLite in a temporary directory)
- integration/: Tests of the fully wired service graph
"""
