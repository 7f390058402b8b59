"""Collaborators used by jobs: LLM, extraction, email, identity, storage."""
