"""
Error taxonomy.

Every error raised inside the engine derives from CommetaError and carries a
stable code, a human-readable message and structured details. The router turns
each of them into a reply, so nothing escapes to the channel as a crash.
"""

from typing import Any, Dict, Optional


class CommetaError(Exception):
    """Base error with structured details."""
    def __init__(self, code: str, message: str, details: Dict[str, Any] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class UserInputError(CommetaError):
    """Missing or malformed argument. Message is the usage hint."""
    def __init__(self, usage: str):
        super().__init__(code="USER_INPUT", message=usage)


class AuthorizationError(CommetaError):
    """A gated command was used without the credential it needs."""
    def __init__(self, message: str, credential_kind: str = "github"):
        super().__init__(
            code="AUTHORIZATION_REQUIRED",
            message=message,
            details={"credential_kind": credential_kind},
        )


class CredentialInvalidError(CommetaError):
    """Credential failed format validation or live verification."""
    def __init__(self, message: str, credential_kind: str):
        super().__init__(
            code="CREDENTIAL_INVALID",
            message=message,
            details={"credential_kind": credential_kind},
        )


class RepoNotFoundError(CommetaError):
    def __init__(self, query: str, available: Optional[list] = None):
        super().__init__(
            code="REPO_NOT_FOUND",
            message=f"Repository '{query}' not found",
            details={"query": query, "available": available or []},
        )


class ExternalToolError(CommetaError):
    """A supervised external tool failed. `outcome` holds the classified result."""
    def __init__(self, outcome):
        super().__init__(
            code=f"TOOL_{outcome.failure_kind.name}" if outcome.failure_kind else "TOOL_FAILED",
            message=outcome.message,
            details={"tool": outcome.tool},
        )
        self.outcome = outcome


class ToolTimeoutError(ExternalToolError):
    """Soft failure: the tool hit its time ceiling and was killed."""


class CollaboratorError(CommetaError):
    """An external AI service call failed."""


class TranscriptionError(CollaboratorError):
    def __init__(self, message: str = "Failed to transcribe audio"):
        super().__init__(code="TRANSCRIPTION_FAILED", message=message)


class AICollaboratorError(CollaboratorError):
    def __init__(self, message: str = "AI request failed"):
        super().__init__(code="AI_FAILED", message=message)
