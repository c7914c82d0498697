"""
Error taxonomy for the artifact lifecycle layer.

Every error carries a stable ``code`` that is safe to return to clients;
the human-readable message is for logs.
"""

from typing import Any, Dict, Optional


class LayoutFoundryError(Exception):
    """Base class for all domain errors."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class NotFoundError(LayoutFoundryError):
    """Raised when an upload, split, asset or version does not exist."""

    code = "NOT_FOUND"

    def __init__(self, object_type: str, object_id: str):
        self.object_type = object_type
        self.object_id = object_id
        super().__init__(f"{object_type} '{object_id}' not found")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "object_type": self.object_type,
            "object_id": self.object_id,
            "message": self.message,
        }


class InvalidGeometryError(LayoutFoundryError):
    """Raised when section geometry cannot be resolved against an image."""

    code = "INVALID_GEOMETRY"


class ImageDecodeError(LayoutFoundryError):
    """Raised when the source image of a crop batch cannot be decoded."""

    code = "IMAGE_DECODE_FAILED"


class StorageUnavailableError(LayoutFoundryError):
    """Raised on blob or database I/O failure."""

    code = "STORAGE_UNAVAILABLE"

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)


class AccessDeniedError(LayoutFoundryError):
    """Base class for signed-access failures.

    Clients only ever see the generic message; the subclass is for logs.
    """

    code = "ACCESS_DENIED"
    public_message = "invalid or expired"


class SignatureInvalidError(AccessDeniedError):
    code = "SIGNATURE_INVALID"


class SignatureExpiredError(AccessDeniedError):
    code = "SIGNATURE_EXPIRED"


class InvalidStatusTransitionError(LayoutFoundryError):
    """Raised when strict split transitions are enabled and a move is illegal."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, object_type: str, object_id: str, old: str, new: str):
        self.object_type = object_type
        self.object_id = object_id
        self.old_status = old
        self.new_status = new
        super().__init__(
            f"{object_type} {object_id} cannot move from '{old}' to '{new}'"
        )


class ConcurrentActivationConflict(LayoutFoundryError):
    """Raised when more than one version of a module ends up active."""

    code = "CONCURRENT_ACTIVATION"

    def __init__(self, module_id: str, active_ids: list):
        self.module_id = module_id
        self.active_ids = active_ids
        super().__init__(
            f"Module {module_id} has {len(active_ids)} active versions: "
            + ", ".join(active_ids)
        )


class VersionLineageError(LayoutFoundryError):
    """Raised when two versions that must share a module do not."""

    code = "VERSION_LINEAGE_MISMATCH"
