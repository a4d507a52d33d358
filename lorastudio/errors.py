"""Typed service errors with stable codes.

Every failure a caller is expected to handle is a subclass of
``ServiceError``.  ``code`` is the stable identifier returned to clients,
``status_code`` is only used by the HTTP adapter, and ``retriable`` tells
the caller whether the same request may succeed later.
"""

from typing import Any, Optional


class ServiceError(Exception):
    """Base class for all expected service failures."""

    code: str = "service_error"
    status_code: int = 500
    retriable: bool = False
    default_message: str = "Service error"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {
            "code": self.code,
            "message": self.message,
            "retriable": self.retriable,
        }
        if self.details:
            body["details"] = self.details
        return body


# ============== Validation ==============


class InvalidRequest(ServiceError):
    code = "invalid_request"
    status_code = 400
    default_message = "Invalid request"


class InsufficientPhotos(ServiceError):
    code = "insufficient_photos"
    status_code = 400
    default_message = "At least 5 photos are required for training"


class MissingUserReference(ServiceError):
    code = "missing_user_reference"
    status_code = 400
    default_message = "Event metadata does not carry a user id"


# ============== Not found (also used for foreign-owned resources) ==============


class ModelNotFound(ServiceError):
    code = "model_not_found"
    status_code = 404
    default_message = "Model not found"


class GenerationNotFound(ServiceError):
    code = "generation_not_found"
    status_code = 404
    default_message = "Image not found"


class ModelNotReady(ServiceError):
    code = "model_not_ready"
    status_code = 409
    default_message = "Model is not ready for generation"


# ============== Quota ==============


class QuotaExceeded(ServiceError):
    code = "quota_exceeded"
    status_code = 429
    default_message = "Daily generation limit reached. Upgrade to premium for more generations."


class ModelLimitReached(ServiceError):
    code = "model_limit_reached"
    status_code = 429
    default_message = "Model limit reached. Upgrade to premium for unlimited models."


# ============== Upstream ==============


class TrainingServiceError(ServiceError):
    code = "training_service_error"
    status_code = 502
    retriable = True
    default_message = "Training service request failed"


class SynthesisJobFailed(ServiceError):
    code = "synthesis_job_failed"
    status_code = 502
    retriable = True
    default_message = "Image synthesis job failed"


class PaymentServiceError(ServiceError):
    code = "payment_service_error"
    status_code = 502
    retriable = True
    default_message = "Payment service request failed"


class InvalidSignature(ServiceError):
    code = "invalid_signature"
    status_code = 400
    default_message = "Invalid payment event signature"


class PaymentRecordNotFound(ServiceError):
    code = "payment_record_not_found"
    status_code = 404
    default_message = "Payment record not found"


# ============== Infrastructure ==============


class PersistenceFailed(ServiceError):
    code = "persistence_failed"
    status_code = 500
    retriable = True
    default_message = "No generated image could be stored"


class DataStoreUnavailable(ServiceError):
    code = "datastore_unavailable"
    status_code = 503
    retriable = True
    default_message = "Data store unavailable"
