"""
Test Suite for the School Task Board

- unit tests per core component (store, schema, managers, engines)
- HTTP API tests through the FastAPI TestClient
"""
