"""Custom exceptions for contextsmith."""


class ContextSmithError(Exception):
    """Base exception for contextsmith."""

    def is_user_error(self) -> bool:
        """True when the failure was caused by user input, not the system."""
        return False


class ConfigError(ContextSmithError):
    """Configuration-related errors."""
    pass


class ValidationError(ContextSmithError):
    """A field or option holds an invalid value."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field

    def __str__(self) -> str:
        return f"invalid '{self.field}': {self.args[0]}"

    def is_user_error(self) -> bool:
        return True


class BudgetConfigError(ValidationError):
    """Budget and reserve are inconsistent (zero budget, reserve >= budget)."""
    pass


class MissingFileError(ContextSmithError):
    """A file referenced by a diff or explicit file list cannot be read."""

    def __init__(self, path: str, reason: str = "file not found"):
        super().__init__(reason)
        self.path = path

    def __str__(self) -> str:
        return f"{self.path}: {self.args[0]}"

    def is_user_error(self) -> bool:
        return True


class GitError(ContextSmithError):
    """git invocation failed or git is not installed."""
    pass


class PatternError(ContextSmithError):
    """A search pattern failed to compile."""

    def __init__(self, pattern: str, message: str):
        super().__init__(message)
        self.pattern = pattern

    def __str__(self) -> str:
        return f"invalid pattern '{self.pattern}': {self.args[0]}"

    def is_user_error(self) -> bool:
        return True


class ManifestError(ContextSmithError):
    """Manifest could not be read or parsed."""

    def __init__(self, path: str, message: str):
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        return f"{self.path}: {self.args[0]}"
