from sqlalchemy import Column, Integer, String, Boolean, ForeignKey
from labwatch.db.base import BaseModel

class Lab(BaseModel):
    __tablename__ = 'labs'

    name = Column(String(200), nullable=False)
    institute_id = Column(Integer, ForeignKey('institutes.id'), nullable=False, index=True)
    department = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True)
