"""Paintworks — FastAPI REST API layer.

This package contains the FastAPI application and the Pydantic request and
response models.

Modules
-------
main
    FastAPI application with all route handlers, the core-error to HTTP
    status mapping, and the ``main()`` CLI entry point.
models
    Pydantic models for API request and response validation.
"""
