# Routes package init
"""
CosmoCard Backend — API Routes Package
========================================

Route Inventory:
    - auth.py:    /api/auth/...           email codes, token verification
    - cards.py:   /api/cards/...          card stages (Bearer token)
    - webhook.py: POST /webhook           legacy single-shot import
    - batch.py:   POST /process-batch     AI sweep over pending rows
    - health.py:  GET  /health            service health check

Routes stay thin: they read the request, call one service method and
return its response model. Errors propagate as CosmoCardError subclasses to
the handlers registered in main.py.
"""
