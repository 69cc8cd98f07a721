"""
Genealogy error taxonomy.

Write-path errors abort the single operation and propagate to the caller.
Each error carries the data the feeding application needs to explain the
rejection (expected unit, maximum use-by date, offending node path).
"""
from datetime import date
from typing import Optional, Sequence


class GenealogyError(Exception):
    """Base class for all batch genealogy errors."""
    pass


class UnitMismatchError(GenealogyError):
    """Raised when an output declares a unit different from its production batch."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Unit mismatch: production batch is measured in '{expected}', "
            f"output declared '{actual}'"
        )


class ShelfLifeExceededError(GenealogyError):
    """Raised when a proposed use-by date exceeds the product's maximum shelf life."""

    def __init__(self, max_use_by: date, proposed: Optional[date] = None):
        self.max_use_by = max_use_by
        self.proposed = proposed
        message = f"Use-by date exceeds maximum shelf life; latest allowed is {max_use_by.isoformat()}"
        if proposed:
            message += f" (proposed {proposed.isoformat()})"
        super().__init__(message)


class CodeGenerationExhaustedError(GenealogyError):
    """Raised when every retry of batch code generation collided with an existing code."""

    def __init__(self, template: str, attempts: int):
        self.template = template
        self.attempts = attempts
        super().__init__(
            f"Could not generate a unique batch code from '{template}' after {attempts} attempts"
        )


class CycleDetectedError(GenealogyError):
    """Raised when the genealogy walk re-enters a node on its own path."""

    def __init__(self, node_id: str, path: Sequence[str]):
        self.node_id = node_id
        self.path = list(path)
        super().__init__(
            f"Cycle detected at {node_id}: {' -> '.join(self.path)}"
        )


class EntityNotFoundError(GenealogyError):
    """Raised when a referenced entity does not exist for the tenant."""

    def __init__(self, entity_type: str, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class InvalidStateError(GenealogyError):
    """Raised when an operation is not allowed in the entity's current state."""
    pass


class StoreConflictError(GenealogyError):
    """Raised when a unique constraint rejected a write (e.g. a batch code race)."""
    pass
