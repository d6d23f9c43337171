"""
PlanGraph Test Suite.

This package contains:
- unit/: Unit tests (no external services; DynamoDB is mocked)
- integration/: Services end to end over the in-memory and SQLite stores
"""
