"""Infrastructure models package exports."""
from .base import Base, metadata
from .authorization import PaymentAuthorizationModel
from .scheduling import ScheduledJobModel
from .ledger import PaymentTransactionModel, EscrowAccountModel
from .audit import PaymentEventLogModel
from .configuration import PaymentConfigurationModel
from .cancellation import CancellationAttemptModel, UserReliabilityModel
from .notification import NotificationOutboxModel, DeliveryCodeModel

__all__ = [
    "Base",
    "metadata",
    "PaymentAuthorizationModel",
    "ScheduledJobModel",
    "PaymentTransactionModel",
    "EscrowAccountModel",
    "PaymentEventLogModel",
    "PaymentConfigurationModel",
    "CancellationAttemptModel",
    "UserReliabilityModel",
    "NotificationOutboxModel",
    "DeliveryCodeModel",
]
