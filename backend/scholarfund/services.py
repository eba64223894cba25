"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories and
the identity gateway. Services perform validation, execute domain logic
and persist records via repositories; they raise `errors.LedgerError`
subclasses and never deal with HTTP.

Funding totals are never stored. `ScholarshipRequest.total_received` is
derived from the contribution ledger on every read, so concurrent
contributions cannot overwrite each other's increments. The remaining
amount check in `ContributionService.record` additionally runs under a
per-student lock, which keeps a single process from over-funding a
request.
"""

import logging
import re
import secrets
import time
import uuid
from typing import Dict, Iterator, List, Optional

from .auth import IdentityGateway
from .config import settings
from .database import KeyValueStore
from .errors import (
    AmountExceedsRemaining,
    InvalidCredentials,
    ProfileMissing,
    ProfileNotFound,
    ScholarshipNotFound,
    StorageFailure,
    ValidationError,
)
from . import repositories, schemas
from .utils.keyed_lock import KeyedLock

logger = logging.getLogger("scholarfund.services")

MIN_PASSWORD_LENGTH = 6
MAX_METRIC = 10.0
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
UNKNOWN = "Unknown"

_contribution_locks = KeyedLock()


def student_handle(roll_number: str) -> str:
    """Login handle synthesized for a student from the roll number."""
    return f"{roll_number.strip()}@{settings.STUDENT_HANDLE_DOMAIN}"


def login_handle(role: str, identifier: str) -> str:
    if role == "student":
        return student_handle(identifier)
    return identifier.strip().lower()


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


class DirectoryService:
    """Registration, sign-in and profile lookup."""
    def __init__(self, store: KeyValueStore, gateway: IdentityGateway):
        self.gateway = gateway
        self.profiles = repositories.ProfileRepository(store)

    def register(self, payload) -> schemas.Identity:
        """Create a credential and profile for a `StudentSignupIn`/`AlumniSignupIn`.

        The credential is removed again if the profile cannot be stored, so
        a failed signup leaves nothing behind.
        """
        fields = self._validate_signup(payload)
        if payload.role == "student":
            handle = student_handle(fields["roll_number"])
        else:
            handle = fields["email"]
        identity = self.gateway.create_user(handle, payload.password, payload.role)
        if payload.role == "student":
            profile = schemas.StudentProfile(id=identity.id, **fields)
        else:
            profile = schemas.AlumniProfile(id=identity.id, **fields)
        try:
            self.profiles.save(profile)
        except StorageFailure:
            logger.error("profile write failed for %s; removing credential", identity.id)
            self.gateway.remove_user(identity.id)
            raise
        logger.info("registered %s %s", payload.role, identity.id)
        return identity

    def authenticate(self, role: str, identifier: str, secret: str) -> schemas.AuthSession:
        """Sign in and return the token together with the stored profile."""
        if not identifier or not identifier.strip():
            raise ValidationError("identifier is required")
        token, identity = self.gateway.sign_in(login_handle(role, identifier), secret)
        if identity.role != role:
            raise InvalidCredentials()
        profile = self.profiles.get(identity.id)
        if profile is None:
            logger.error("credential %s has no profile record", identity.id)
            raise ProfileMissing(f"no profile for {identity.id}")
        return schemas.AuthSession(token=token, profile=profile)

    def get(self, user_id: str) -> schemas.Profile:
        profile = self.profiles.get(user_id)
        if profile is None:
            raise ProfileNotFound()
        return profile

    def find(self, user_id: str) -> Optional[schemas.Profile]:
        return self.profiles.get(user_id)

    def _validate_signup(self, payload) -> dict:
        if len(payload.password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
        fields = {
            "name": _require_text(payload.name, "name"),
            "phone": _require_text(payload.phone, "phone"),
            "department": _require_text(payload.department, "department"),
        }
        if payload.role == "student":
            fields["roll_number"] = _require_text(payload.roll_number, "rollNumber")
            if not 1 <= payload.year <= 5:
                raise ValidationError("year must be between 1 and 5")
            if not 1 <= payload.semester <= 10:
                raise ValidationError("semester must be between 1 and 10")
            fields["year"] = payload.year
            fields["semester"] = payload.semester
        else:
            email = _require_text(payload.email, "email").lower()
            if not EMAIL_RE.match(email):
                raise ValidationError("email is not valid")
            if email.endswith(f"@{settings.STUDENT_HANDLE_DOMAIN}"):
                raise ValidationError("email domain is reserved for student accounts")
            fields["email"] = email
            fields["passed_out_year"] = payload.passed_out_year
            fields["linked_in"] = (payload.linked_in or "").strip() or None
        return fields


def _ledger_totals(contributions) -> Dict[tuple, int]:
    """Sum contribution amounts per (student id, request id)."""
    totals: Dict[tuple, int] = {}
    for c in contributions:
        key = (c.student_id, c.request_id)
        totals[key] = totals.get(key, 0) + c.amount
    return totals


class ScholarshipService:
    """The scholarship registry: one funding request per student."""
    def __init__(self, store: KeyValueStore):
        self.scholarships = repositories.ScholarshipRepository(store)
        self.contributions = repositories.ContributionRepository(store)
        self.profiles = repositories.ProfileRepository(store)

    def submit(self, caller: schemas.Identity, student_id: str, payload: schemas.ScholarshipIn) -> schemas.ScholarshipRequest:
        """Create or replace the caller's scholarship request.

        A replaced request starts again from a zero total: it gets a new
        `request_id`, and only contributions tagged with that id count.
        """
        if caller.id != student_id:
            raise ValidationError("students may only submit their own scholarship request")
        profile = self.profiles.get(student_id)
        if not isinstance(profile, schemas.StudentProfile):
            raise ValidationError("only students can request scholarships")
        if payload.amount_required <= 0:
            raise ValidationError("amountRequired must be a positive amount")
        self._validate_metrics(payload.academic_metrics, profile)
        reason = (payload.reason or "").strip()
        if len(reason) > settings.MAX_REASON_LENGTH:
            raise ValidationError(f"reason must be at most {settings.MAX_REASON_LENGTH} characters")
        request = schemas.ScholarshipRequest(
            student_id=student_id,
            request_id=uuid.uuid4().hex,
            amount_required=payload.amount_required,
            academic_metrics=payload.academic_metrics,
            reason=reason or None,
        )
        self.scholarships.save(request)
        logger.info("scholarship request %s submitted by %s", request.request_id, student_id)
        return request

    def get(self, student_id: str) -> schemas.ScholarshipRequest:
        """Return the student's request with its ledger-derived total."""
        request = self.scholarships.get(student_id)
        if request is None:
            raise ScholarshipNotFound()
        request.total_received = sum(c.amount for c in self.contributions.list_for_request(request))
        return request

    def list_all(self) -> Iterator[dict]:
        """Yield every request joined with the owner's display fields.

        Profiles are looked up one at a time as the listing is consumed; a
        missing or unreadable profile yields placeholder values instead of an error.
        """
        requests = self.scholarships.list_all()
        totals = _ledger_totals(self.contributions.iter_all())
        for request in requests:
            request.total_received = totals.get((request.student_id, request.request_id), 0)
            out = request.to_json()
            out.update(self._display_fields(self._profile_or_none(request.student_id)))
            yield out

    def contributions_for(self, student_id: str) -> List[schemas.Contribution]:
        request = self.scholarships.get(student_id)
        if request is None:
            raise ScholarshipNotFound()
        return self.contributions.list_for_request(request)

    def _profile_or_none(self, student_id: str) -> Optional[schemas.Profile]:
        try:
            return self.profiles.get(student_id)
        except StorageFailure:
            logger.warning("listing %s without profile fields", student_id)
            return None

    def _display_fields(self, profile: Optional[schemas.Profile]) -> dict:
        if profile is None:
            return {
                "studentName": UNKNOWN,
                "studentDepartment": UNKNOWN,
                "studentYear": UNKNOWN,
                "studentPhone": "",
                "studentEmail": "",
            }
        if isinstance(profile, schemas.StudentProfile):
            year = profile.year
            email = student_handle(profile.roll_number)
        else:
            year = UNKNOWN
            email = profile.email
        return {
            "studentName": profile.name,
            "studentDepartment": profile.department,
            "studentYear": year,
            "studentPhone": profile.phone,
            "studentEmail": email,
        }

    def _validate_metrics(self, metrics: schemas.AcademicMetrics, profile: schemas.StudentProfile):
        if not 0 <= metrics.overall_average <= MAX_METRIC:
            raise ValidationError(f"overallAverage must be between 0 and {MAX_METRIC:g}")
        seen = set()
        for period in metrics.period_averages:
            if period.semester < 1:
                raise ValidationError("semester numbers start at 1")
            if period.semester >= profile.semester:
                raise ValidationError(f"semester {period.semester} is not a completed semester")
            if period.semester in seen:
                raise ValidationError(f"semester {period.semester} listed more than once")
            seen.add(period.semester)
            if not 0 <= period.gpa <= MAX_METRIC:
                raise ValidationError(f"gpa for semester {period.semester} must be between 0 and {MAX_METRIC:g}")


class ContributionService:
    """The contribution ledger. Entries are appended, never changed."""
    def __init__(self, store: KeyValueStore):
        self.registry = ScholarshipService(store)
        self.contributions = repositories.ContributionRepository(store)

    def record(self, caller: schemas.Identity, student_id: str, amount: int) -> schemas.Contribution:
        """Append a contribution from `caller` toward the student's request.

        The read of the current total, the remaining-amount check and the
        append happen under the student's lock. The append is the only
        write, so a failure leaves the ledger and the total untouched.
        """
        if amount <= 0:
            raise ValidationError("amount must be a positive amount")
        if not student_id or not student_id.strip():
            raise ValidationError("studentId is required")
        with _contribution_locks.hold(student_id):
            request = self.registry.get(student_id)
            if amount > request.remaining:
                raise AmountExceedsRemaining(amount, request.remaining)
            contribution = schemas.Contribution(
                id=f"{int(time.time() * 1000)}-{caller.id}-{secrets.token_hex(4)}",
                alumni_id=caller.id,
                student_id=student_id,
                request_id=request.request_id,
                amount=amount,
            )
            self.contributions.append(contribution)
        logger.info("contribution %s: %s -> %s amount=%d", contribution.id, caller.id, student_id, amount)
        return contribution


class StatsService:
    """Portal-wide counters computed from three independent scans."""
    def __init__(self, store: KeyValueStore):
        self.store = store

    def snapshot(self) -> schemas.StatsOut:
        profiles = repositories.ProfileRepository(self.store).list_all()
        requests = self.store.get_by_prefix(repositories.SCHOLARSHIP_PREFIX)
        contributions = repositories.ContributionRepository(self.store).iter_all()
        return schemas.StatsOut(
            active_alumni=sum(1 for p in profiles if isinstance(p, dict) and p.get("role") == "alumni"),
            students_with_scholarship=len(requests),
            total_contributions=sum(c.amount for c in contributions),
        )
