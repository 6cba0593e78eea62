# app/errors.py
"""
Domain exceptions raised by the service layer.

Each carries the HTTP status the API should answer with; the handler
registered in create_app() renders them as {"error": message}.
"""


class InventoryError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class InvalidInput(InventoryError):
    status_code = 400


class NotFound(InventoryError):
    status_code = 404


class InvalidPositionFormat(InventoryError):
    """A position label that is not one letter followed by a column number."""
    status_code = 400

    def __init__(self, label: str):
        super().__init__(f"position '{label}' has an invalid format, expected e.g. A1, B2, C3")
        self.label = label


class PositionConflict(InventoryError):
    """A grid position is already occupied by a stored tube."""
    status_code = 409


class PartialOutbound(InventoryError):
    status_code = 409

    def __init__(self, requested: int, available: int):
        super().__init__(
            f"some cells were already removed or do not exist "
            f"({available} of {requested} still stored)"
        )
        self.requested = requested
        self.available = available


class StorageNotEmpty(InventoryError):
    """Deleting or shrinking a storage unit that still holds stored tubes."""
    status_code = 409

    def __init__(self, message: str, cells_count: int):
        super().__init__(message)
        self.cells_count = cells_count

    def to_dict(self) -> dict:
        return {"error": self.message, "cellsCount": self.cells_count}
