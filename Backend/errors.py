"""
Error taxonomy for the ticket core.

- InvalidInput       bad category / coordinate / status string (caller's fault, not retried)
- InvalidTransition  illegal status change, ticket left untouched
- NotFound           unknown ticket id
- StoreUnavailable   database unreachable, timed out or locked (safe to retry)
"""


class CivicError(Exception):
    """Base class for every error raised by the ticket core."""

    retryable = False


class InvalidInput(CivicError):
    pass


class InvalidTransition(CivicError):
    def __init__(self, current, target, reason=None):
        self.current = current
        self.target = target
        message = f"Cannot move ticket from {current.value} to {target.value}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NotFound(CivicError):
    def __init__(self, ticket_id):
        self.ticket_id = ticket_id
        super().__init__(f"Ticket {ticket_id} not found")


class StoreUnavailable(CivicError):
    retryable = True


class ConfigError(CivicError):
    pass
