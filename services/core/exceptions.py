"""
Domain Exceptions for Goal Forge

Exception hierarchy for conversation, saga, ledger and credential logic.
Everything inherits from BaseForgeException so the API layer can map
it to a structured error payload.

Taxonomy:
    AuthError                  - owner mismatch, missing/expired board link
    ValidationFailed           - rejected before any side effect
    TransientCollaboratorError - retried once, then resolved by step criticality
    CollaboratorError          - permanent collaborator failure

Author: Goal Forge Core Team
"""


class BaseForgeException(Exception):
    """Base exception for all Goal Forge business errors"""

    remediation: str | None = None

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        """Serialize for API response"""
        payload = {
            "error": {
                "code": self.__class__.__name__,
                "message": self.message,
                "details": self.details
            }
        }
        if self.remediation:
            payload["error"]["remediation"] = self.remediation
        return payload


# =============================================================================
# Auth errors
# =============================================================================

class AuthError(BaseForgeException):
    """Caller is not allowed to perform the operation"""


class OwnerMismatch(AuthError):
    """Session or goal belongs to somebody else"""

    def __init__(self, resource: str, resource_id: str, owner: str):
        super().__init__(
            message=f"{resource} does not belong to the caller",
            details={
                "resource": resource,
                "resource_id": resource_id,
                "owner": owner
            }
        )


class BoardNotLinked(AuthError):
    """No board service token stored for the owner"""

    remediation = (
        "You need to connect your board account first! "
        "Use the connect link to authorize access, then try again."
    )

    def __init__(self, owner: str):
        super().__init__(
            message="No board token found. Please authenticate first.",
            details={"owner": owner}
        )


class BoardLinkExpired(AuthError):
    """Board service rejected the stored token; it has been invalidated"""

    remediation = (
        "Your board connection has expired. Please reconnect your board "
        "account and I'll pick up where we left off."
    )

    def __init__(self, owner: str):
        super().__init__(
            message="Board authentication expired. Please re-authenticate.",
            details={"owner": owner}
        )


# =============================================================================
# Validation errors
# =============================================================================

class ValidationFailed(BaseForgeException):
    """Input rejected before any side effect"""


class EmptyMessage(ValidationFailed):

    def __init__(self):
        super().__init__(message="Message text must not be empty")


class MissingSlot(ValidationFailed):
    """One of the six goal-setting answers is absent"""

    def __init__(self, slot: str):
        super().__init__(
            message=f"Missing answer for '{slot}'",
            details={"slot": slot}
        )


class MalformedAddress(ValidationFailed):

    def __init__(self, address: str):
        super().__init__(
            message="Invalid wallet address",
            details={"address": address}
        )


class InvalidRecoveryPhrase(ValidationFailed):

    def __init__(self):
        super().__init__(message="Invalid recovery phrase")


class WalletAlreadyExists(ValidationFailed):

    def __init__(self, owner: str, address: str):
        super().__init__(
            message="Owner already has a wallet",
            details={"owner": owner, "address": address}
        )


class InvalidPlan(ValidationFailed):
    """Planning collaborator returned a plan we cannot provision"""

    def __init__(self, reason: str):
        super().__init__(
            message=f"Generated plan is not usable: {reason}",
            details={"reason": reason}
        )


# =============================================================================
# Lookup / state errors
# =============================================================================

class SessionNotFound(BaseForgeException):

    def __init__(self, session_id: str):
        super().__init__(
            message="Session does not exist",
            details={"session_id": session_id}
        )


class GoalNotFound(BaseForgeException):

    def __init__(self, goal_id: str):
        super().__init__(
            message="Goal does not exist",
            details={"goal_id": goal_id}
        )


class InvalidSessionTransition(BaseForgeException):
    """State machine refused a transition"""

    def __init__(self, session_id: str, from_state: str, to_state: str):
        super().__init__(
            message=f"Cannot move session from '{from_state}' to '{to_state}'",
            details={
                "session_id": session_id,
                "from_state": from_state,
                "to_state": to_state
            }
        )


# =============================================================================
# Collaborator errors
# =============================================================================

class CollaboratorError(BaseForgeException):
    """External collaborator failed permanently"""

    def __init__(self, collaborator: str, message: str, details: dict = None):
        merged = {"collaborator": collaborator}
        merged.update(details or {})
        super().__init__(message=message, details=merged)


class TransientCollaboratorError(CollaboratorError):
    """Timeout, rate limit or 5xx; safe to retry once"""


class LedgerNotConfigured(CollaboratorError):
    """Credential ledger endpoint or key is absent"""

    def __init__(self, missing: list):
        super().__init__(
            collaborator="credential_ledger",
            message="Credential ledger not configured",
            details={"missing": missing}
        )


class RewardPersistenceError(BaseForgeException):
    """Ledger entry could not be written; pending balance was rolled back"""

    def __init__(self, owner: str, amount: int, reason: str):
        super().__init__(
            message="Reward could not be persisted",
            details={"owner": owner, "amount": amount, "reason": reason}
        )


# =============================================================================
# Credential invariants
# =============================================================================

class SoulboundTransferForbidden(BaseForgeException):
    """Credentials can only move through the implicit mint path"""

    def __init__(self, token_id, from_address: str, to_address: str):
        super().__init__(
            message="Soulbound credentials cannot be transferred",
            details={
                "token_id": token_id,
                "from": from_address,
                "to": to_address
            }
        )


class CredentialMetadataImmutable(BaseForgeException):

    def __init__(self, token_id):
        super().__init__(
            message="Credential metadata is immutable once minted",
            details={"token_id": token_id}
        )


# =============================================================================
# HTTP Status Mapping
# =============================================================================

# Most specific class wins; lookup walks the MRO.
EXCEPTION_TO_STATUS = {
    OwnerMismatch: 403,
    BoardNotLinked: 401,
    BoardLinkExpired: 401,
    AuthError: 401,
    WalletAlreadyExists: 409,
    ValidationFailed: 400,
    SessionNotFound: 404,
    GoalNotFound: 404,
    InvalidSessionTransition: 409,
    LedgerNotConfigured: 503,
    TransientCollaboratorError: 503,
    CollaboratorError: 502,
    RewardPersistenceError: 503,
    SoulboundTransferForbidden: 403,
    CredentialMetadataImmutable: 409,
}


def status_for(exc: BaseForgeException) -> int:
    for cls in type(exc).__mro__:
        if cls in EXCEPTION_TO_STATUS:
            return EXCEPTION_TO_STATUS[cls]
    return 500
