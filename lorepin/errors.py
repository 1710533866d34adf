"""Domain error taxonomy shared by the CMS services.

Provider failures never appear here: adapters absorb them and fall back.
These errors are the recoverable, caller-visible ones that the HTTP layer
translates to status codes.
"""


class LorePinError(Exception):
    """Base class for recoverable domain errors"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DomainError(LorePinError):
    """A request that violates a business rule"""

    status_code = 400


class InvalidTransitionError(DomainError):
    """A state-machine transition that is not allowed from the current state"""

    def __init__(self, message: str, current_status=None, requested_status=None):
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status


class NotFoundError(LorePinError):
    status_code = 404

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class PermissionDeniedError(LorePinError):
    status_code = 403
