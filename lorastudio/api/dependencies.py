"""Service providers for route dependencies (overridable in tests)."""

from lorastudio.services.billing_service import BillingService, billing_service
from lorastudio.services.generation_service import GenerationService, generation_service
from lorastudio.services.training_service import TrainingService, training_service


def get_training_service() -> TrainingService:
    return training_service


def get_generation_service() -> GenerationService:
    return generation_service


def get_billing_service() -> BillingService:
    return billing_service
