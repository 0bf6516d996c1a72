"""Custom exceptions for the notegraph engine.

Provides a structured exception hierarchy with error codes and
machine-readable error information. The four families the graph engine
surfaces to callers are ValidationError, NotFoundError, ConflictError and
TransportError. SearchError only feeds the resolver, which degrades on it
instead of surfacing it.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_TITLE_REQUIRED = 1004

    # Link errors (2xxx)
    LINK_INVALID = 2001
    LINK_NOT_FOUND = 2003
    LINK_SELF_REFERENCE = 2004
    LINK_DELETE_CONFLICT = 2005

    # Transport errors (4xxx)
    TRANSPORT_UNAVAILABLE = 4001
    TRANSPORT_TIMEOUT = 4002
    STORAGE_WRITE_FAILED = 4003

    # Search errors (5xxx)
    SEARCH_FAILED = 5001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    OWNER_REQUIRED = 7002
    OWNER_MISMATCH = 7003


class NoteGraphError(Exception):
    """Base exception for all notegraph errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class ValidationError(NoteGraphError):
    """Raised for rejected input: self-loops, empty targets, bad arguments.

    Always raised before any optimistic local mutation is applied.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class NotFoundError(NoteGraphError):
    """Raised when a note or edge does not exist or is not owned by the caller."""

    def __init__(
        self,
        message: str,
        entity: str,
        entity_id: str,
        code: ErrorCode = ErrorCode.NOTE_NOT_FOUND
    ):
        super().__init__(
            message,
            code=code,
            details={"entity": entity, "entity_id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class NoteNotFoundError(NotFoundError):
    """Raised when a note cannot be found for the acting owner."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            entity="note",
            entity_id=note_id,
            code=ErrorCode.NOTE_NOT_FOUND,
        )
        self.note_id = note_id


class EdgeNotFoundError(NotFoundError):
    """Raised when a link edge cannot be found for the acting owner."""

    def __init__(self, edge_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Link with ID '{edge_id}' not found",
            entity="link",
            entity_id=edge_id,
            code=ErrorCode.LINK_NOT_FOUND,
        )
        self.edge_id = edge_id


class ConflictError(NoteGraphError):
    """Raised when a mutation lost a race, e.g. deleting an already-deleted edge."""

    def __init__(
        self,
        message: str,
        edge_id: Optional[str] = None,
        code: ErrorCode = ErrorCode.LINK_DELETE_CONFLICT,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if edge_id:
            details["edge_id"] = edge_id
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.edge_id = edge_id
        self.original_error = original_error


class TransportError(NoteGraphError):
    """Raised when the durable store is unreachable or timed out."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.TRANSPORT_UNAVAILABLE,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class SearchError(NoteGraphError):
    """Raised when the note search behind reference resolution fails."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        code: ErrorCode = ErrorCode.SEARCH_FAILED
    ):
        details = {}
        if query:
            details["query"] = query[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.query = query
