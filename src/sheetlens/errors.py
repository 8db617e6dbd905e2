"""Exception types for the preview/approval engine."""

from typing import Optional


class SheetLensError(Exception):
    """Base class for all SheetLens errors."""

    pass


class ParseError(SheetLensError):
    """Raised when a cell or range reference is malformed."""

    def __init__(self, reference: str, reason: str = ""):
        self.reference = reference
        self.reason = reason
        message = f"Invalid reference '{reference}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class SimulationNoOpError(SheetLensError):
    """Raised when a batch of operations produces no observable change."""

    def __init__(self, operation_count: int = 0):
        self.operation_count = operation_count
        super().__init__("No changes to preview")


class HighlightApplyError(SheetLensError):
    """A host call failed while painting or restoring a single cell."""

    def __init__(self, cell: str, reason: str):
        self.cell = cell
        self.reason = reason
        super().__init__(f"Failed to update highlight on {cell}: {reason}")


class ApplyExecutionError(SheetLensError):
    """A real host write failed while committing an operation."""

    def __init__(self, tool: str, reason: str, request_id: Optional[str] = None):
        self.tool = tool
        self.reason = reason
        self.request_id = request_id
        super().__init__(f"Failed to execute {tool}: {reason}")


class UnsupportedToolError(SheetLensError):
    """Raised when an operation names a tool the executor does not know."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"Unsupported tool: {tool}")


class PreviewStateError(SheetLensError):
    """Raised when a preview transition is requested from the wrong state."""

    pass


class ApprovalError(SheetLensError):
    """Raised for invalid approval queue requests."""

    pass
