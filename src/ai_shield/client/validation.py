"""
Post-generation content checks.
"""

from __future__ import annotations

import re
from typing import ClassVar

from ai_shield.types import ValidationResult


class ContentValidator:
    """Validates generated text.

    Empty content is an error; length and content-pattern findings are
    warnings, so a result with only warnings is still valid.

    Example:
        >>> validator = ContentValidator()
        >>> validator.validate("").is_valid
        False
    """

    DEFAULT_PATTERNS: ClassVar[list[str]] = [
        r"\b(spam|advertis(?:ing|ement))\b",
        r"\b(financial advice|investment advice)\b",
    ]

    def __init__(
        self,
        min_length: int = 50,
        max_length: int = 4000,
        patterns: list[str] | None = None,
    ) -> None:
        self._min_length = min_length
        self._max_length = max_length
        self._patterns = [
            re.compile(p, re.IGNORECASE)
            for p in (self.DEFAULT_PATTERNS if patterns is None else patterns)
        ]

    def validate(self, content: str) -> ValidationResult:
        warnings: list[str] = []
        errors: list[str] = []

        if not content or not content.strip():
            errors.append("Content must not be empty")

        if len(content) < self._min_length:
            warnings.append(f"Content is too short (under {self._min_length} characters)")

        if len(content) > self._max_length:
            warnings.append(f"Content is too long (over {self._max_length} characters)")

        if any(p.search(content) for p in self._patterns):
            warnings.append("Content may contain inappropriate material")

        return ValidationResult.from_findings(warnings=warnings, errors=errors)
