"""Composable predicate objects over domain entities.

Concrete specifications subclass BaseSpecification and implement
``is_satisfied_by``; ``and_``/``or_``/``not_`` build composites.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class BaseSpecification(BaseModel):
    """Base class for concrete specifications."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def is_satisfied_by(self, entity: Any) -> bool:
        """Check if the entity satisfies this specification."""
        raise NotImplementedError("Subclasses must implement is_satisfied_by")

    def and_(self, other: "BaseSpecification") -> "BaseSpecification":
        """Combine with another specification using AND logic."""
        return AndSpecification(left=self, right=other)

    def or_(self, other: "BaseSpecification") -> "BaseSpecification":
        """Combine with another specification using OR logic."""
        return OrSpecification(left=self, right=other)

    def not_(self) -> "BaseSpecification":
        """Negate this specification."""
        return NotSpecification(spec=self)


class AndSpecification(BaseSpecification):
    type: Literal["and"] = "and"
    left: BaseSpecification
    right: BaseSpecification

    def is_satisfied_by(self, entity: Any) -> bool:
        return self.left.is_satisfied_by(entity) and self.right.is_satisfied_by(entity)


class OrSpecification(BaseSpecification):
    type: Literal["or"] = "or"
    left: BaseSpecification
    right: BaseSpecification

    def is_satisfied_by(self, entity: Any) -> bool:
        return self.left.is_satisfied_by(entity) or self.right.is_satisfied_by(entity)


class NotSpecification(BaseSpecification):
    type: Literal["not"] = "not"
    spec: BaseSpecification

    def is_satisfied_by(self, entity: Any) -> bool:
        return not self.spec.is_satisfied_by(entity)

