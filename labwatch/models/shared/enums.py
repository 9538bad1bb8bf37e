from enum import Enum

# Enums
class Role(str, Enum):
    POLICY_MAKER = "POLICY_MAKER"    # Unrestricted, policy-level access
    LAB_MANAGER = "LAB_MANAGER"      # Institute + department
    TRAINER = "TRAINER"              # Institute + department + lab

class EquipmentStatusType(str, Enum):
    OPERATIONAL = "OPERATIONAL"
    IN_USE = "IN_USE"
    IN_CLASS = "IN_CLASS"
    IDLE = "IDLE"
    MAINTENANCE = "MAINTENANCE"
    FAULTY = "FAULTY"
    OFFLINE = "OFFLINE"
    WARNING = "WARNING"

class AlertType(str, Enum):
    HIGH_TEMPERATURE = "HIGH_TEMPERATURE"
    ABNORMAL_VIBRATION = "ABNORMAL_VIBRATION"
    HIGH_ENERGY_CONSUMPTION = "HIGH_ENERGY_CONSUMPTION"
    BREAKDOWN_CHECK = "BREAKDOWN_CHECK"

class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

class NotificationType(str, Enum):
    ALERT = "ALERT"
    BREAKDOWN_ALERT = "BREAKDOWN_ALERT"
    BREAKDOWN_RESOLVED = "BREAKDOWN_RESOLVED"
    REORDER_REQUEST = "REORDER_REQUEST"
    REORDER_APPROVED = "REORDER_APPROVED"
    REORDER_REJECTED = "REORDER_REJECTED"

class BreakdownStatus(str, Enum):
    REPORTED = "REPORTED"
    REORDER_PENDING = "REORDER_PENDING"
    REORDER_APPROVED = "REORDER_APPROVED"
    REORDER_REJECTED = "REORDER_REJECTED"
    RESOLVED = "RESOLVED"

class ReorderStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

class Urgency(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

class SweepTrigger(str, Enum):
    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"


# A record in one of these states blocks a new report for the same equipment
OPEN_BREAKDOWN_STATUSES = (
    BreakdownStatus.REPORTED,
    BreakdownStatus.REORDER_PENDING,
    BreakdownStatus.REORDER_APPROVED,
)

# Equipment in these states is excluded from the inactivity sweep
SWEEP_EXCLUDED_STATUSES = (
    EquipmentStatusType.MAINTENANCE,
    EquipmentStatusType.FAULTY,
)
