from sqlalchemy import Column, Integer, String, Boolean, ForeignKey
from labwatch.db.base import BaseModel

class Equipment(BaseModel):
    __tablename__ = 'equipment'

    equipment_id = Column(String(50), unique=True, nullable=False, index=True)  # External/device ID
    name = Column(String(200), nullable=False)
    equipment_type = Column(String(100))
    institute_id = Column(Integer, ForeignKey('institutes.id'), nullable=False, index=True)
    department = Column(String(100), nullable=False)
    lab_id = Column(Integer, ForeignKey('labs.id'), nullable=False, index=True)
    is_active = Column(Boolean, default=True)
