"""
Domain errors raised by the buffet services.

Every error is recoverable by the caller: routers let them propagate and the
handler installed in ``buffet.main`` renders them with their HTTP status.
"""


class BuffetError(Exception):
    """Base exception for session, billing and stock failures."""

    status_code = 400

    def __init__(self, message, **detail):
        self.message = message
        self.detail = detail
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message, "detail": self.detail}


class NotFound(BuffetError):
    status_code = 404

    def __init__(self, entity, entity_id, message=None):
        if message is None:
            message = f"{entity} not found"
        super().__init__(message, entity=entity, id=entity_id)


class InvalidState(BuffetError):
    status_code = 409


class AlreadyPaused(InvalidState):
    def __init__(self, session_id):
        super().__init__("Session is already paused", session_id=session_id)


class NotPaused(InvalidState):
    def __init__(self, session_id):
        super().__init__("Session is not paused", session_id=session_id)


class TableUnavailable(InvalidState):
    def __init__(self, table, message=None):
        if message is None:
            message = f"Table {table.table_number} is not available"
        super().__init__(
            message,
            table_id=table.id,
            table_number=table.table_number,
            status=table.status.value if table.status else None,
            is_out_of_service=bool(table.is_out_of_service),
        )


class InsufficientResource(BuffetError):
    status_code = 409


class InsufficientPoints(InsufficientResource):
    def __init__(self, member_id, requested, available):
        super().__init__(
            f"Insufficient points: requested {requested}, available {available}",
            member_id=member_id,
            requested=requested,
            available=available,
        )


class InsufficientStock(InsufficientResource):
    def __init__(self, menu_item, requested):
        available = menu_item.stock_quantity
        super().__init__(
            f"Insufficient stock for '{menu_item.name}': requested {requested}, available {available}",
            menu_item_id=menu_item.id,
            menu_item_name=menu_item.name,
            requested=requested,
            available=available,
            shortfall=requested - (available or 0),
        )


class OutOfStock(BuffetError):
    status_code = 409

    def __init__(self, menu_item):
        super().__init__(
            f"'{menu_item.name}' is out of stock",
            menu_item_id=menu_item.id,
            menu_item_name=menu_item.name,
        )


class ValidationError(BuffetError):
    status_code = 400


class NotEntitled(ValidationError):
    def __init__(self, menu_item_id, package_id):
        super().__init__(
            "Menu item is not included in the session's package",
            menu_item_id=menu_item_id,
            package_id=package_id,
        )
