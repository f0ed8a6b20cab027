"""
Continuity Engine - Error Taxonomy
"""


class ContinuityError(Exception):
    """Base class for all continuity engine errors"""


class NotFoundError(ContinuityError):
    """A referenced record (e.g. assessment template) does not exist"""

    def __init__(self, resource_type: str, resource_id: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} {resource_id} not found")


class StorageError(ContinuityError):
    """Any failure raised by the clinical record store"""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class PreconditionError(ContinuityError):
    """Caller violated an operation precondition (programming error)"""
