from labwatch.models.organization.institute import Institute
from labwatch.models.organization.lab import Lab
from labwatch.models.auth.user import User
from labwatch.models.equipment.equipment import Equipment
from labwatch.models.equipment.equipment_status import EquipmentStatus
from labwatch.models.equipment.sensor_reading import SensorReading
from labwatch.models.alerts.alert import Alert
from labwatch.models.alerts.notification import Notification
from labwatch.models.breakdown.breakdown_record import BreakdownRecord
from labwatch.models.breakdown.reorder_request import ReorderRequest
