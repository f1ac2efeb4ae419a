"""
API server package: HTTP/REST interface for application intake and screening.

Delegates to the screening orchestrator and the database layer.
"""
