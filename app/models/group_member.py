# app/models/group_member.py
"""
Co-ownership group membership.
Share percentage and role feed the priority scorer.
"""

import enum
from sqlalchemy import Column, String, Float, Enum, UniqueConstraint
from app.database import Base


class GroupRole(str, enum.Enum):
    ADMIN = "Admin"
    MEMBER = "Member"


class GroupMember(Base):
    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_member"),)

    id = Column(String(36), primary_key=True)
    group_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    share_percentage = Column(Float, nullable=False, default=0.0)   # 0.0 – 1.0
    role = Column(Enum(GroupRole, name="group_role"), nullable=False, default=GroupRole.MEMBER)

    def __repr__(self):
        return f"<GroupMember user={self.user_id} group={self.group_id} share={self.share_percentage} role={self.role}>"
