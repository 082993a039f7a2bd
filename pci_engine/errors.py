"""
PCI Engine Errors
Error taxonomy shared by every module.

Each error carries the same fields as an API error envelope
(code, message, target, details) so callers can serialize it directly.
"""

from typing import Any, Dict, Optional


class PCIError(Exception):
    """Base class for all PCI Engine errors."""

    code: str = "pci_error"

    def __init__(self, message: str, target: Optional[str] = None, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.target = target  # Field name or entity ID
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "target": self.target,
            "details": self.details,
        }


class ValidationError(PCIError):
    """Malformed or missing input (factors, filters, settings, identity)."""

    code = "validation_error"


class NotFoundError(PCIError):
    """Operation references an unknown task, flag or settings record."""

    code = "not_found"


class ConflictError(PCIError):
    """Attempted transition from a terminal status or an overwrite of an immutable record."""

    code = "conflict"

    def __init__(
        self,
        message: str,
        target: Optional[str] = None,
        details: Optional[Any] = None,
        current_status: Optional[str] = None,
        requested_status: Optional[str] = None,
    ):
        super().__init__(message, target=target, details=details)
        self.current_status = current_status
        self.requested_status = requested_status


class StorageError(PCIError):
    """The backing store failed. Never retried inside the engine."""

    code = "storage_error"


def from_pydantic(exc, target: Optional[str] = None) -> ValidationError:
    """Convert a pydantic ValidationError into a ValidationError."""
    errors = exc.errors(include_url=False)
    fields = [".".join(str(p) for p in e.get("loc", ())) for e in errors]
    message = f"Invalid input: {', '.join(f for f in fields if f) or 'payload'}"
    return ValidationError(
        message,
        target=target,
        details=[{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in errors],
    )
