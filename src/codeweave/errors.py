"""
Exception types raised by codeweave.

Repairable problems (unresolved imports, compiler diagnostics) are never
raised; they travel as ValidationError records. The exceptions here are for
configuration mistakes, collaborator failures and programming errors.
"""


class CodeweaveError(Exception):
    """Base class for all codeweave exceptions."""

    pass


class ConfigurationError(CodeweaveError):
    """Raised when configuration is invalid."""

    pass


class DuplicateAdapterError(CodeweaveError):
    """Raised when two language adapters are registered under one id."""

    pass


class UnknownAdapterError(CodeweaveError):
    """Raised when an adapter id is not registered and no default is set."""

    pass


class SynthesisError(CodeweaveError):
    """Raised when the code synthesizer cannot produce a usable response."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class ToolchainError(CodeweaveError):
    """Raised when a build toolchain command cannot be run at all."""

    pass


class InvalidTransitionError(CodeweaveError):
    """Raised when an assembly run is moved backwards through its states."""

    pass


class ScratchNotFoundError(CodeweaveError):
    """Raised when a preview scratch handle does not exist."""

    pass


class RunNotFoundError(CodeweaveError):
    """Raised when a persisted assembly run cannot be found."""

    pass
