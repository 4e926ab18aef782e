"""
Feature modules for the migration backend.

Each feature is a self-contained module with:
- models.py - SQLAlchemy models
- repository.py - Data access
- schemas.py - Pydantic schemas (optional)
- service.py - Business logic (optional)
"""
