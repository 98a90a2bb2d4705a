"""Custom exceptions for configuration management."""

from typing import List, Optional


class ConfigurationError(Exception):
    """
    Exception raised when configuration loading or validation fails.

    Collects individual validation errors and remediation suggestions and
    renders them as one readable message for the CLI.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        """
        Initialize ConfigurationError.

        Args:
            message: Primary error message
            errors: List of specific validation errors
            suggestions: List of hints for fixing the errors
        """
        self.message = message
        self.errors = list(errors or [])
        self.suggestions = list(suggestions or [])
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]

        if self.errors:
            parts.append("\nValidation Errors:")
            parts.extend(f"  {i}. {error}" for i, error in enumerate(self.errors, 1))

        if self.suggestions:
            parts.append("\nSuggestions:")
            parts.extend(f"  - {suggestion}" for suggestion in self.suggestions)

        return "\n".join(parts)

    def __str__(self) -> str:
        return self._format_message()
