from chatdesk.services.errors import (
    ChatdeskError,
    ConflictError,
    NotFoundError,
    RejectedError,
    ServiceError,
    TransportDegradedWarning,
)
from chatdesk.services.state_machine import (
    InvalidTransitionError,
    Ownership,
    OwnershipState,
    can_transition,
    ownership_from_assignment,
    transition,
)
