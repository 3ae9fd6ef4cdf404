"""
CosmoCard Backend — Application Package Initializer
====================================================

What: Marks the `cosmocard` directory as a Python package.
Who:  Used by uvicorn (`cosmocard.main:app`), Alembic and pytest.

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Services (orchestration, auth)    │  ← stage machine, compensation
    ├─────────────────────────────────────┤
    │  Collaborators (Drive, Sheets, AI)  │  ← external managed services
    ├─────────────────────────────────────┤
    │   Registry (async SQLAlchemy)       │  ← cards and users keyed by id
    └─────────────────────────────────────┘

    The spreadsheet is an export of the registry: every card row keeps the
    same fixed column positions, but the registry decides a card's stage.
"""

__version__ = "1.0.0"
