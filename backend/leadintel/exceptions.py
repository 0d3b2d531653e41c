"""Custom exceptions for the lead intelligence core."""

from decimal import Decimal


class LeadIntelError(Exception):
    """Base exception for all lead intelligence errors."""
    
    status_code = 500
    code = "INTERNAL_ERROR"
    
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LeadIntelError):
    """Raised when a referenced entity does not exist."""
    
    status_code = 404
    code = "NOT_FOUND"
    
    def __init__(self, resource: str, id=None):
        message = f"{resource} not found: {id}" if id is not None else f"{resource} not found"
        super().__init__(message)
        self.resource = resource
        self.id = id


class InsufficientCreditsError(LeadIntelError):
    """Raised when a charge would drive a client's balance below zero."""
    
    status_code = 402
    code = "INSUFFICIENT_CREDITS"
    
    def __init__(self, client_id, required: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient credits for client {client_id}: "
            f"required {required}, available {available}"
        )
        self.client_id = client_id
        self.required = required
        self.available = available


class ProviderError(LeadIntelError):
    """Raised by a provider adapter when the upstream call fails."""
    
    status_code = 502
    code = "PROVIDER_ERROR"
    
    def __init__(self, provider: str, message: str, status: int = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status = status


class ValidationError(LeadIntelError):
    """Raised for invalid caller input."""
    
    status_code = 400
    code = "VALIDATION_ERROR"


class NotConfiguredError(LeadIntelError):
    """Raised when an optional service is used without its configuration."""
    
    status_code = 503
    code = "NOT_CONFIGURED"
    
    def __init__(self, service: str):
        super().__init__(f"{service} is not configured")
        self.service = service


class MalformedModelOutputError(LeadIntelError):
    """Raised when the model classifier returns output that fails validation."""
    pass


class InvalidStageTransitionError(LeadIntelError):
    """Raised when a pipeline stage change would move a record backwards."""
    
    status_code = 409
    code = "INVALID_STAGE_TRANSITION"
    
    def __init__(self, from_stage: str, to_stage: str):
        super().__init__(f"Cannot move from '{from_stage}' to '{to_stage}'")
        self.from_stage = from_stage
        self.to_stage = to_stage
