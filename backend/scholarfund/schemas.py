"""Pydantic schemas for API payloads and stored documents.

Schemas keep API input/output shapes stable and describe the JSON
documents kept in the key-value store. All of them speak camelCase on the
wire (`rollNumber`, `amountRequired`, ...) and accept snake_case names in
Python code.
"""

from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, TypeAdapter
from pydantic.alias_generators import to_camel

Role = Literal["student", "alumni"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        """Dump to the camelCase, JSON-safe dict used on the wire and in storage."""
        return self.model_dump(by_alias=True, mode="json")


class Identity(BaseModel):
    """An authenticated principal as resolved by the identity gateway."""
    id: str
    role: Role


class StudentProfile(CamelModel):
    role: Literal["student"] = "student"
    id: str
    name: str
    phone: str
    department: str
    roll_number: str
    year: int
    semester: int
    created_at: datetime = Field(default_factory=utcnow)


class AlumniProfile(CamelModel):
    role: Literal["alumni"] = "alumni"
    id: str
    name: str
    phone: str
    department: str
    email: str
    passed_out_year: Optional[int] = None
    linked_in: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


Profile = Annotated[Union[StudentProfile, AlumniProfile], Field(discriminator="role")]
profile_adapter = TypeAdapter(Profile)


class StudentSignupIn(CamelModel):
    role: Literal["student"]
    name: str
    phone: str
    department: str
    roll_number: str
    year: int
    semester: int
    password: str


class AlumniSignupIn(CamelModel):
    role: Literal["alumni"]
    name: str
    phone: str
    department: str
    email: str
    passed_out_year: Optional[int] = None
    linked_in: Optional[str] = None
    password: str


SignupIn = Annotated[Union[StudentSignupIn, AlumniSignupIn], Field(discriminator="role")]
signup_adapter = TypeAdapter(SignupIn)


class LoginIn(CamelModel):
    """`identifier` is the roll number for students and the email for alumni."""
    role: Role
    identifier: str
    password: str


class AuthSession(CamelModel):
    """The token/profile pair a client holds after signing in."""
    token: str
    profile: Profile


class PeriodAverage(CamelModel):
    semester: int
    gpa: float


class AcademicMetrics(CamelModel):
    overall_average: float
    period_averages: List[PeriodAverage] = Field(default_factory=list)


class ScholarshipIn(CamelModel):
    # booleans and floats are not amounts
    amount_required: StrictInt
    academic_metrics: AcademicMetrics
    reason: Optional[str] = None


class ContributeIn(CamelModel):
    student_id: str
    amount: StrictInt


class ScholarshipRequest(CamelModel):
    """A student's funding ask.

    `total_received` is never persisted: it is filled in from the ledger
    every time the request is read.
    """
    student_id: str
    request_id: Optional[str] = None
    amount_required: int
    academic_metrics: AcademicMetrics
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    total_received: int = 0

    @property
    def remaining(self) -> int:
        return self.amount_required - self.total_received

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude={"total_received"})

    def to_json(self) -> dict:
        out = super().to_json()
        out["remaining"] = self.remaining
        return out


class Contribution(CamelModel):
    id: str
    alumni_id: str
    student_id: str
    request_id: Optional[str] = None
    amount: int
    created_at: datetime = Field(default_factory=utcnow)


class StatsOut(CamelModel):
    active_alumni: int = 0
    students_with_scholarship: int = 0
    total_contributions: int = 0
