"""
Kernel error taxonomy.

Every failure the component API reports is one of these. Each carries a
machine-readable `code` so a request layer can map it without inspecting
messages.
"""


class KernelError(Exception):
    """Base class for all typed kernel failures."""

    code = "kernel_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, **self.context}


class NotFoundError(KernelError):
    """Referenced entity is absent."""
    code = "not_found"


class ForbiddenError(KernelError):
    """Caller lacks ownership or issuer rights."""
    code = "forbidden"


class UnauthorizedError(KernelError):
    """Attester is not permitted to issue the attestation type."""
    code = "unauthorized"


class InvalidArgumentError(KernelError):
    """Malformed input: empty field sets, out-of-range confidence, bad windows."""
    code = "invalid_argument"


class ConflictError(KernelError):
    """Double revocation, wrong lifecycle state, or a stale version. Retryable when stale."""
    code = "conflict"


class ExpiredError(KernelError):
    """The consent window has lapsed."""
    code = "expired"


class AnchorError(Exception):
    """Raised by an anchor sink. Never surfaces past the anchor dispatcher."""
    pass
