"""Application package for the scholarship ledger backend.

This package exposes the service, repository and model modules used by
the FastAPI application. Students post funding requests, alumni record
contributions against them, and every record lives in a generic
key-value store; individual modules contain the concrete implementations
and documentation.
"""
