"""
Backend package for the family memories service.

This package provides a FastAPI application plus the database and storage
abstractions that stand in for the hosted backend the web client used to
call directly.
"""
