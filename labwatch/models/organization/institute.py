from sqlalchemy import Column, String, Text, Boolean
from labwatch.db.base import BaseModel

class Institute(BaseModel):
    __tablename__ = 'institutes'

    code = Column(String(20), unique=True, nullable=False)
    name = Column(String(200), nullable=False)
    address = Column(Text)
    is_active = Column(Boolean, default=True)
