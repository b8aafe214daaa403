import enum

class ItemStatus(str, enum.Enum):
    active = "active"
    discontinued = "discontinued"

class TransactionType(str, enum.Enum):
    inbound = "in"
    outbound = "out"

class ReferenceType(str, enum.Enum):
    manual = "manual"
    requisition = "requisition"

class RequisitionStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    ordered = "ordered"
    received = "received"
    cancelled = "cancelled"

class Priority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"
