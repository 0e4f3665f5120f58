"""Exceptions raised inside the entitlement engine.

None of these escape the public engine operations; they mark failures that
a module boundary converts into a fallback value.
"""


class EntitlementError(Exception):
    """Base class for entitlement engine errors"""


class RemoteError(EntitlementError):
    """Billing ledger returned something we cannot interpret"""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class StateStoreError(EntitlementError):
    """Local state could not be read or written"""
