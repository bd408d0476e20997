"""Service layer — provisioning, interaction, and teardown.

Services may import from domain and infrastructure layers.
They must never import from the runner or the CLI.
"""
