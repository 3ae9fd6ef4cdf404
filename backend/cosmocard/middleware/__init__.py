# Middleware package init
"""
CosmoCard Backend — Middleware Package
========================================

Middleware Chain:
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route

    Rate limiting only watches the one-time code endpoints; every other path
    passes straight through. The request ID is set before the access log line
    is written, so both carry the same ID.
"""
