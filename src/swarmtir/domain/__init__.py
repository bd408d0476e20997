"""Domain layer — descriptors, keys, and the constitution compiler.

This layer depends only on stdlib and pydantic.
It must never import from services, infrastructure, or config.
"""
