class OrderEngineError(Exception):
    """Base class for every error raised by the order engine."""


# --- Validation: rejected locally, before any write ---

class OrderValidationError(OrderEngineError):
    pass


class InsufficientStockError(OrderValidationError):
    def __init__(self, product_id: str, name: str, available: int):
        self.product_id = product_id
        self.available = available
        super().__init__(f"Insufficient stock for '{name}': only {available} available")


class InsufficientPointsError(OrderValidationError):
    def __init__(self, required: int, balance: int):
        self.required = required
        self.balance = balance
        super().__init__(f"Insufficient points: required {required}, balance {balance}")


class MissingCustomerNameError(OrderValidationError):
    def __init__(self):
        super().__init__("Customer name is required")


class EmptyCartError(OrderValidationError):
    def __init__(self):
        super().__init__("Cart is empty")


class NotRedeemableError(OrderValidationError):
    def __init__(self, product_id: str, name: str):
        self.product_id = product_id
        super().__init__(f"'{name}' cannot be redeemed with points")


# --- State machine ---

class InvalidTransitionError(OrderEngineError):
    def __init__(self, order_id: str, action: str, status: str):
        self.order_id = order_id
        self.action = action
        self.status = status
        super().__init__(f"Cannot {action} order {order_id} while {status}")


class NotFoundError(OrderEngineError):
    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


# --- Connectivity ---

class RemoteStoreError(OrderEngineError):
    """The remote store did not answer or rejected a write."""
