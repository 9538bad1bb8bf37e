from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Enum as SQLEnum
from labwatch.db.base import BaseModel
from labwatch.models.shared.enums import Role

class User(BaseModel):
    __tablename__ = 'users'

    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    role = Column(SQLEnum(Role), nullable=False, index=True)
    # Scope; unused for policy-level roles
    institute_id = Column(Integer, ForeignKey('institutes.id'), nullable=True)
    department = Column(String(100), nullable=True)
    lab_id = Column(Integer, ForeignKey('labs.id'), nullable=True)
    is_active = Column(Boolean, default=True)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or self.email
