"""
Error Taxonomy Module

Typed, recoverable failures surfaced by every lending operation. Each error
carries a stable code and the HTTP status the API layer maps it to.
"""

from typing import Any, Dict


class LendingError(ValueError):
    """Base class for all lending domain failures"""
    
    code = "LENDING_ERROR"
    http_status = 400
    
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
    
    def to_response(self) -> Dict[str, Any]:
        """Convert to REST error envelope"""
        return {
            "error": {
                "code": self.code,
                "message": self.message
            }
        }


class NotFound(LendingError):
    """Referenced user, loan or invite does not exist"""
    code = "NOT_FOUND"
    http_status = 404
    
    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} '{entity_id}' not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class Unauthorized(LendingError):
    """Actor or role does not match the attempted action"""
    code = "UNAUTHORIZED"
    http_status = 403


class InvalidTransition(LendingError):
    """Action is not valid from the loan's current status"""
    code = "INVALID_TRANSITION"
    http_status = 409


class InvalidAmount(LendingError):
    code = "INVALID_AMOUNT"
    http_status = 400


class InvalidDueDate(LendingError):
    code = "INVALID_DUE_DATE"
    http_status = 400


class DuplicateInvite(LendingError):
    code = "DUPLICATE_INVITE"
    http_status = 409


class DuplicateEmail(LendingError):
    code = "DUPLICATE_EMAIL"
    http_status = 409


class LenderUnavailable(LendingError):
    """Loaner has paused new loan requests"""
    code = "LENDER_UNAVAILABLE"
    http_status = 409


class MissingProof(LendingError):
    code = "MISSING_PROOF"
    http_status = 400


class AuthFailure(LendingError):
    """Email/password pair did not match an account"""
    code = "AUTH_FAILURE"
    http_status = 401
    
    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class InvalidProfile(LendingError):
    """Registration or profile data failed validation"""
    code = "INVALID_PROFILE"
    http_status = 400
