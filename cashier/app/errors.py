class CashierError(Exception):
    """Base class for expected order/sync failures."""

    code = "error"


class OrderNotFound(CashierError):
    code = "not_found"

    def __init__(self, order_id: str, where: str = "active orders"):
        self.order_id = order_id
        super().__init__(f"order {order_id} not found in {where}")


class VersionConflict(CashierError):
    code = "conflict"

    def __init__(self, order_id: str, incoming, stored):
        self.order_id = order_id
        self.incoming = incoming
        self.stored = stored
        super().__init__(f"Conflict: newer version exists (order {order_id}: incoming {incoming}, stored {stored})")


class OrderAlreadyActive(CashierError):
    code = "already_active"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"order {order_id} is already active")


class IdCollisionError(CashierError):
    code = "id_collision"


class RemoteUnavailable(CashierError):
    """Central store could not be reached or answered with an error."""

    code = "remote_unavailable"
