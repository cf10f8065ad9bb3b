"""
Entitlement error taxonomy.

Network and payload errors are converted into ``Failure`` values at the
remote client boundary; store errors propagate to the resolver, which
decides the fallback tier. ``InvariantViolation`` signals a programming
error and is never part of normal control flow.
"""

from typing import Optional


class EntitlementError(Exception):
    """Base class for entitlement engine errors"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NetworkFailure(EntitlementError):
    """Remote authority unreachable, timed out, or answered non-2xx"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class MalformedResponse(EntitlementError):
    """Remote authority answered with a body that does not match the schema"""


class StoreFailure(EntitlementError):
    """Local persistent store could not be read or written"""


class InvariantViolation(EntitlementError):
    """Entitlement computed from incomplete inputs"""
