from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    DEVELOPER = "developer"

    @classmethod
    def parse(cls, value: "str | Role") -> "Role":
        """Accept any casing, e.g. the legacy ``Developer`` spelling."""
        if isinstance(value, Role):
            return value
        return cls(str(value).strip().lower())


# Columns a filter or patch may reference
USER_FIELDS = frozenset(
    {
        "id",
        "name",
        "email",
        "password",
        "role",
        "phone_number",
        "is_active",
        "address",
        "created_at",
        "updated_at",
        "created_by",
        "modified_by",
    }
)
# Fields that must stay unique across all users
UNIQUE_USER_FIELDS = ("email", "phone_number")
# Fields a patch may never touch
IMMUTABLE_USER_FIELDS = frozenset({"id", "created_at"})


@dataclass
class User:
    id: str
    name: str
    email: str
    password: str
    phone_number: int
    role: Role = Role.USER
    is_active: bool = True
    address: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    created_by: Optional[str] = None
    modified_by: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        """Public view without the password hash."""
        return {
            "userId": self.id,
            "userName": self.name,
            "email": self.email,
            "role": self.role.value,
        }

    def profile(self) -> Dict[str, Any]:
        return {
            "userId": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "phoneNumber": self.phone_number,
            "isActive": self.is_active,
            "address": self.address,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "createdBy": self.created_by,
            "modifiedBy": self.modified_by,
        }

    def to_record(self) -> Dict[str, Any]:
        """Plain dict used for persistence snapshots."""
        record = asdict(self)
        record["role"] = self.role.value
        record["created_at"] = self.created_at.isoformat()
        record["updated_at"] = self.updated_at.isoformat()
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "User":
        data = dict(record)
        data["id"] = str(data["id"])
        data["role"] = Role.parse(data.get("role", Role.USER))
        for key in ("created_at", "updated_at"):
            raw = data.get(key)
            if isinstance(raw, str):
                data[key] = datetime.fromisoformat(raw)
            elif raw is None:
                data[key] = utcnow()
        for key in ("created_by", "modified_by"):
            if data.get(key) is not None:
                data[key] = str(data[key])
        data["address"] = data.get("address") or ""
        return cls(**{k: v for k, v in data.items() if k in USER_FIELDS})
