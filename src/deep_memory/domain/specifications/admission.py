"""Content admissibility rules applied before anything is stored."""

import re
from typing import Any, ClassVar

from pydantic import Field

from deep_memory.core.base import ValidationErrorDetails
from deep_memory.core.errors import ValidationError

from .base import BaseSpecification

# Internal reasoning markers and role prefixes that never belong in memory
EXCLUDED_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^<thinking>", re.IGNORECASE),
    re.compile(r"^<interactive_input>", re.IGNORECASE),
    re.compile(r"^System:", re.IGNORECASE),
    re.compile(r"^Assistant:", re.IGNORECASE),
    re.compile(r"^\[System\]", re.IGNORECASE),
    re.compile(r"^\[Assistant\]", re.IGNORECASE),
    # Structured scene prompts
    re.compile(r"^- 当前处于何种情境"),
    re.compile(r"^时间？.*地点？.*社会关系？"),
    re.compile(r"^[。，、；：？！,.;:?!\s]+$"),
)

_HTML_TAG = re.compile(r"<[^>]+>")


def strip_html(text: str) -> str:
    """Remove markup tags and collapse the whitespace they leave behind."""
    return re.sub(r"\s+", " ", _HTML_TAG.sub(" ", text)).strip()


class ContentAdmissionSpecification(BaseSpecification):
    """Decides whether a piece of content is worth remembering."""

    min_length: int = Field(default=5, ge=1)
    patterns: ClassVar[tuple[re.Pattern[str], ...]] = EXCLUDED_PATTERNS
    source: ClassVar[str] = "content_admission"

    def rejection_reason(self, content: Any) -> str | None:
        if not isinstance(content, str):
            return "not_text"
        stripped = content.strip()
        if not stripped:
            return "empty"
        if len(stripped) < self.min_length:
            return "too_short"
        for pattern in self.patterns:
            if pattern.search(stripped):
                return f"excluded_pattern:{pattern.pattern}"
        return None

    def is_satisfied_by(self, entity: Any) -> bool:
        return self.rejection_reason(entity) is None

    def check(self, content: Any) -> str:
        """Return trimmed content or raise ValidationError."""
        reason = self.rejection_reason(content)
        if reason is not None:
            raise ValidationError(
                message=f"Content rejected: {reason}",
                details=ValidationErrorDetails(
                    source=self.source,
                    operation="admit",
                    field="content",
                    actual_value=content[:80] if isinstance(content, str) else type(content).__name__,
                    constraint=reason,
                ),
            )
        return content.strip()
