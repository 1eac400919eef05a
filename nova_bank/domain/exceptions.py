"""Domain-specific exceptions

Every exception carries a message that is safe to show to the end user and
to hand to the assistant for paraphrasing. ``code`` is stable and is what
metrics and logs use; it is never displayed.
"""


class DomainException(Exception):
    """Base exception for domain layer"""

    code = "domain_error"
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotAuthenticatedError(DomainException):
    """No user is signed in for this session"""

    code = "not_authenticated"
    default_message = "Error: You are not logged in."


class InvalidAmountError(DomainException):
    """Amount is zero, negative, or otherwise unusable"""

    code = "invalid_amount"
    default_message = "Error: Payment amount must be positive."


class InsufficientFundsError(DomainException):
    """Cash balance does not cover the requested movement"""

    code = "insufficient_funds"
    default_message = "Error: Insufficient funds."


class RecipientNotFoundError(DomainException):
    """No user matched the transfer identifier"""

    code = "recipient_not_found"


class AmbiguousRecipientError(DomainException):
    """More than one user matched the transfer identifier on the same field"""

    code = "ambiguous_recipient"


class SelfTransferError(DomainException):
    """Transfer recipient resolved to the sender"""

    code = "self_transfer"
    default_message = "Error: Cannot send money to yourself."


class AccountNotFoundError(DomainException):
    """No card or loan matched the account identifier"""

    code = "account_not_found"


class ApplicationRejectedError(DomainException):
    """Underwriting declined a card, loan, or extension request"""

    code = "application_rejected"


class ExternalServiceError(DomainException):
    """Ledger store or chat service failed"""

    code = "external_service_error"
    default_message = "The service is temporarily unavailable. Please try again later."


class UnknownToolError(ExternalServiceError):
    """The chat service asked for a tool that is not in the registry"""

    code = "unknown_tool"


class ToolArgumentError(ExternalServiceError):
    """Tool-call arguments do not match the declared schema"""

    code = "invalid_tool_arguments"


class AuthChallengeDeniedError(DomainException):
    """Strong re-authentication was declined, failed, or timed out"""

    code = "auth_challenge_denied"
    default_message = "User cancelled the action with their passkey."
