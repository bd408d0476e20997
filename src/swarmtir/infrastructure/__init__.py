"""Infrastructure layer — workspace directories, ledger, process, transport.

This layer depends on stdlib and third-party libs (SQLAlchemy, pydantic).
It must never import from services or the runner.
"""
