"""
Pedagogy error taxonomy.

- NotFoundError: profile or acquisition record missing
- CollaboratorError: a store or content-generation call failed
- InvalidInputError: malformed input to a pure function (programming error)
"""

from __future__ import annotations


class PedagogyError(Exception):
    """Base class for all pedagogy errors."""
    pass


class NotFoundError(PedagogyError, LookupError):
    """Raised when a required record does not exist."""
    pass


class ProfileNotFoundError(NotFoundError):
    """Raised when an operation needs an existing learner profile."""

    def __init__(self, learner_id: str):
        super().__init__(f"Learner profile not found: {learner_id}")
        self.learner_id = learner_id


class CollaboratorError(PedagogyError):
    """Raised when an external collaborator (store, generator) fails."""

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator


class InvalidInputError(PedagogyError, ValueError):
    """Raised for malformed input such as negative counts."""
    pass
