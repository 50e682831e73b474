# =============================================================================
# Custom Exceptions for the Clinic Schedule Grid
# =============================================================================

class ScheduleError(Exception):
    """Base exception class for the schedule grid."""
    pass

class CellValidationError(ScheduleError):
    """Raised when a cell document cannot be turned into a valid cell."""
    pass

class PersistenceError(ScheduleError):
    """Raised when reading or writing the schedule document fails."""
    pass

class CellActionError(ScheduleError):
    """Raised when a cell action is not allowed on the current cell."""
    pass

class MoveRejectedError(ScheduleError):
    """Raised when a drag-and-drop move breaks a placement rule."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

class PartSelectionRequiredError(MoveRejectedError):
    """Raised when dropping onto a split cell without choosing a part."""

    def __init__(self, message: str = "Choose which part of the split cell to drop onto."):
        super().__init__(message)

class SourcePartRequiredError(MoveRejectedError):
    """Raised when a fully occupied split cell is dragged without choosing a part."""

    def __init__(self, message: str = "Choose which part of the split cell to move."):
        super().__init__(message)

class PartOccupiedError(MoveRejectedError):
    """Raised when the target cell or part already holds content."""

    def __init__(self, message: str = "The target part is already occupied."):
        super().__init__(message)

class BreakCellError(MoveRejectedError):
    """Raised when a break cell is used as a move source or target."""

    def __init__(self, message: str = "Break cells cannot be moved or dropped onto."):
        super().__init__(message)
