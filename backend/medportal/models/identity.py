from __future__ import annotations

from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from .doctor import Doctor, DoctorPublic, Patient, PatientPublic
from .enums import Role


class Principal(BaseModel):
    """Authenticated identity supplied by the auth provider."""
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None


class SuperAdminProfile(BaseModel):
    """Superadmins have no stored profile; they are built from the principal."""
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None


class RoleProfile(BaseModel):
    """Tagged union over Doctor / Patient / SuperAdmin / Unknown.

    Profiles are plain snapshots, never session-bound rows, so a resolved
    role can outlive the request that produced it. Load the live row by
    ``profile.id`` when current counters are needed.
    """
    model_config = ConfigDict(frozen=True)

    role: Role
    profile: Union[DoctorPublic, PatientPublic, SuperAdminProfile, None] = None

    @classmethod
    def for_doctor(cls, doctor: Doctor) -> "RoleProfile":
        return cls(role=Role.doctor, profile=DoctorPublic.from_doctor(doctor))

    @classmethod
    def for_patient(cls, patient: Patient) -> "RoleProfile":
        return cls(role=Role.patient, profile=PatientPublic.from_patient(patient))

    @classmethod
    def unknown(cls) -> "RoleProfile":
        return cls(role=Role.unknown, profile=None)

    @property
    def is_known(self) -> bool:
        return self.role is not Role.unknown

    @property
    def doctor_id(self) -> Optional[UUID]:
        if isinstance(self.profile, DoctorPublic):
            return self.profile.id
        return None

    def public(self) -> dict:
        profile = self.profile.model_dump(mode="json") if self.profile is not None else None
        return {"role": self.role.value, "profile": profile}
