"""Caller identity schemas."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class Role(str, Enum):
    """Portal roles recognized by the scheduling API."""

    PATIENT = "patient"
    CLINICIAN = "clinician"
    STAFF = "staff"
    ADMIN = "admin"


class ActorContext(BaseModel):
    """Authenticated caller, passed explicitly to every scheduling operation."""

    model_config = ConfigDict(frozen=True)

    user_id: UUID
    role: Role

    @property
    def is_privileged(self) -> bool:
        """Staff and admins act on behalf of any patient or clinician."""
        return self.role in (Role.STAFF, Role.ADMIN)
