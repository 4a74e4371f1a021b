"""
Test Suite

This module contains all tests for the Caseflow backend.

Structure:
    tests/
    ├── __init__.py         # This file
    ├── conftest.py         # Pytest fixtures (mongomock database, directory, workflows)
    ├── unit/               # Engine and service tests
    └── integration/        # API endpoint tests through TestClient

To run tests:
    pytest backend/tests/
    pytest backend/tests/unit/
    pytest backend/tests/integration/
"""
