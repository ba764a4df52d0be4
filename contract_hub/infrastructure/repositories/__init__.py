from .audit_repository import AuditEventRepository
from .contract_repository import ContractRepository
from .offer_repository import OfferRepository
from .request_repository import EngagementRequestRepository
from .user_repository import UserRepository

__all__ = [
    "AuditEventRepository",
    "ContractRepository",
    "EngagementRequestRepository",
    "OfferRepository",
    "UserRepository",
]
