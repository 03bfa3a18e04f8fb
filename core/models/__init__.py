from .base import BaseModel, TimeStampedModel, UserStampedModel, SoftDeleteModel
from .audit import AuditLog
from .domain import StatefulDomainModel
from .numbering import NumberingScheme, NumberSequence
from .notifications import Notification

__all__ = [
    "BaseModel",
    "TimeStampedModel",
    "UserStampedModel",
    "SoftDeleteModel",
    "AuditLog",
    "Notification",
    # numbering
    "NumberingScheme",
    "NumberSequence",
    # domain
    "StatefulDomainModel",
]
