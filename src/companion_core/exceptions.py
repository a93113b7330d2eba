"""Companion core exception classes.

Each sub-operation of an interaction fails with one of these so the caller can
report a structured, per-operation outcome.
"""


class CompanionCoreError(Exception):
    """Base exception for the companion core."""

    pass


class InvalidScope(CompanionCoreError):
    """A required scope identifier (user or character) is missing."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Invalid scope: '{field}' must be a non-empty string")


class EmbeddingUnavailable(CompanionCoreError):
    """The embedding service failed on every retry attempt."""

    def __init__(self, attempts: int, cause: BaseException | None = None):
        self.attempts = attempts
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Embedding unavailable after {attempts} attempt(s){detail}")


class PersistenceError(CompanionCoreError):
    """A store read or write failed."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class VersionConflict(PersistenceError):
    """Optimistic version check failed on a relationship upsert."""

    def __init__(self, user_id: str, character_id: str, expected_version: int):
        self.user_id = user_id
        self.character_id = character_id
        self.expected_version = expected_version
        super().__init__(
            "relationship_upsert",
            f"version conflict for {user_id}:{character_id} "
            f"(expected version {expected_version})",
        )
