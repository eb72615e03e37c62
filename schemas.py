"""
Database Schemas for Handyman Tracker

Each top-level model maps to a MongoDB collection:
User -> "users", Customer -> "customers". Project and Material are embedded
documents stored inside Customer.projects and Project.materials.

Stored and wire field names are camelCase (bidAmount, scheduleDate, ...);
Python attributes stay snake_case through the alias generator.
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UserRole = Literal["pending", "admin", "super-admin"]
UserStatus = Literal["pending", "approved", "rejected"]
ProjectStatus = Literal["Pending", "Bidded", "Scheduled", "Completed", "Billed"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    def to_mongo(self) -> dict:
        return self.model_dump(by_alias=True)


class User(Document):
    username: str = Field(..., description="Unique login name")
    email: str = Field(..., description="Unique email address")
    password: str = Field(..., description="bcrypt hash, never the plaintext")
    role: UserRole = "pending"
    status: UserStatus = "pending"
    approved_by: Optional[ObjectId] = Field(None, description="User who approved this account")
    approved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_now)


class Material(Document):
    id: ObjectId = Field(default_factory=ObjectId, alias="_id")
    item: Optional[str] = None
    quantity: Optional[float] = None
    cost: Optional[float] = None


class Project(Document):
    id: ObjectId = Field(default_factory=ObjectId, alias="_id")
    name: Optional[str] = None
    description: Optional[str] = None
    bid_amount: Optional[float] = None
    bill_amount: Optional[float] = None
    status: ProjectStatus = "Pending"
    schedule_date: Optional[datetime] = None
    materials: List[Material] = []
    created_at: datetime = Field(default_factory=_now)


class Customer(Document):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: str = ""
    projects: List[Project] = []

"""
Notes:
- Embedded Project/Material ids are generated here, so they exist before the
  parent document is written and can be returned straight to the caller.
- Status transitions on Project are not guarded; any of the project routes
  may be called in any order.
"""
