"""
Card content service.

This package provides a FastAPI application that idempotently stores one
JSON document per (user, card type) pair for the dashboard and keeps an
append-only audit log of every accepted write.
"""
