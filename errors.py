# errors.py
# Error taxonomy for ledger transitions, market lookups and persistence.
# Validation errors leave the ledger untouched and are reported back to the
# caller as a rejected request; nothing here is fatal to the process.


class TradingError(Exception):
    """Base class for every error the trading core reports."""


class ValidationError(TradingError):
    """A request was rejected before any state changed."""


class InsufficientFunds(ValidationError):
    def __init__(self, required, available):
        super().__init__(f"Insufficient funds: need {required:.2f}, have {available:.2f}")
        self.required = required
        self.available = available


class InsufficientHoldings(ValidationError):
    def __init__(self, asset_id, required, available):
        super().__init__(f"Insufficient holdings of {asset_id}: need {required}, have {available}")
        self.asset_id = asset_id
        self.required = required
        self.available = available


class InvalidQuantity(ValidationError):
    def __init__(self, quantity):
        super().__init__(f"Invalid quantity {quantity!r}: must be a positive integer")
        self.quantity = quantity


class InvalidPrice(ValidationError):
    def __init__(self, price):
        super().__init__(f"Invalid price {price!r}: must be positive")
        self.price = price


class InvalidSide(ValidationError, ValueError):
    def __init__(self, side):
        super().__init__(f"Invalid side {side!r}: must be BUY or SELL")
        self.side = side


class OrderNotFound(TradingError):
    def __init__(self, order_id):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class AssetNotFound(TradingError):
    def __init__(self, asset_id):
        super().__init__(f"Asset {asset_id} not found")
        self.asset_id = asset_id


class PersistenceUnavailable(TradingError):
    """The document store could not load, save or subscribe."""


class LedgerNotFound(TradingError):
    """The store has no document for this account yet."""

    def __init__(self, account_id):
        super().__init__(f"No ledger stored for account {account_id}")
        self.account_id = account_id


class LedgerInvariantError(Exception):
    """A transition produced an impossible ledger. Always a bug, never user input."""
