"""
Domain exceptions for the EngagePerfect backend.

Every exception raised by the service layer derives from ServiceError and
carries a stable error code and the HTTP status the API layer maps it to.
Typed *results* (invalid referral code, already-existing customer record) are
not exceptions; see the referral services.
"""

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base exception for service layer errors"""

    code = "service_error"
    status_code = 500

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result = {"detail": self.message, "code": self.code}
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(ServiceError):
    """Invalid or missing input"""
    code = "validation_error"
    status_code = 400


class NotFoundError(ServiceError):
    """Requested entity does not exist"""
    code = "not_found"
    status_code = 404


class PartnerStateError(ServiceError):
    """Partner lifecycle transition is not allowed from the current status"""
    code = "invalid_partner_state"
    status_code = 409


class DuplicateCodeError(ServiceError):
    """Referral code is already taken"""
    code = "duplicate_code"
    status_code = 409


class DuplicateInvoiceError(ServiceError):
    """A ledger entry already exists for this partner and invoice"""
    code = "duplicate_invoice"
    status_code = 409

    def __init__(self, partner_id: str, invoice_id: str, existing_entry_id: Optional[str] = None):
        super().__init__(
            f"Commission already recorded for invoice {invoice_id} (partner {partner_id})",
            {"partner_id": partner_id, "invoice_id": invoice_id, "entry_id": existing_entry_id},
        )
        self.existing_entry_id = existing_entry_id


class LedgerEntryTerminalError(ServiceError):
    """Ledger entry is already paid or reversed"""
    code = "ledger_entry_terminal"
    status_code = 409

    def __init__(self, entry_id: str, current_status: str, requested_status: str):
        super().__init__(
            f"Ledger entry {entry_id} is already {current_status}; cannot mark it {requested_status}",
            {"entry_id": entry_id, "status": current_status, "requested": requested_status},
        )
        self.current_status = current_status


class WebhookSignatureError(ServiceError):
    """Webhook signature is missing or does not match"""
    code = "invalid_signature"
    status_code = 401


class QuotaExceededError(ServiceError):
    """User has no generation requests left"""
    code = "quota_exceeded"
    status_code = 429


class DuplicateRequestError(ServiceError):
    """An identical generation request is already in progress"""
    code = "duplicate_request"
    status_code = 409


class GenerationError(ServiceError):
    """
    Failure of an AI generation call, tagged with its error kind.

    Raised at the boundary where the OpenAI client (or the response parser) is
    called, so recovery works on ``kind`` instead of re-reading messages.
    ``user_message`` is filled in when recovery gives up.
    """
    code = "generation_failed"
    status_code = 502

    def __init__(
        self,
        kind: str,
        message: str = "",
        raw_output: Optional[str] = None,
        user_message: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        attempts: int = 1,
    ):
        super().__init__(message or kind, {"kind": kind})
        self.kind = kind
        self.raw_output = raw_output
        self.user_message = user_message
        self.cause = cause
        self.attempts = attempts

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.user_message:
            result["message"] = self.user_message
        return result


class PartnerExistsError(ServiceError):
    """A partner is already registered with this email or user"""
    code = "partner_exists"
    status_code = 409


class ConfigurationError(ServiceError):
    """A required setting is missing"""
    code = "not_configured"
    status_code = 503
