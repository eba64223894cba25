"""Repository classes mapping domain records onto the key-value layout.

Each repository is small and focused on a single aggregate and owns its
key prefix:

- `user:<id>`                       profile document
- `student:rollNumber:<n>` -> id    student lookup
- `alumni:email:<e>` -> id          alumni lookup
- `scholarship:<studentId>`         scholarship request document
- `contribution:<id>`               ledger entry

Repositories return pydantic models and never interpret business rules.
"""

import logging
from typing import Any, Callable, Iterator, List, Optional

import pydantic

from .database import KeyValueStore
from .errors import StorageFailure
from . import schemas

logger = logging.getLogger("scholarfund.repositories")

USER_PREFIX = "user:"
STUDENT_ROLL_PREFIX = "student:rollNumber:"
ALUMNI_EMAIL_PREFIX = "alumni:email:"
SCHOLARSHIP_PREFIX = "scholarship:"
CONTRIBUTION_PREFIX = "contribution:"


def _decode(parse: Callable[[Any], Any], raw: Any, what: str):
    """Parse a stored document; an unreadable one is a storage fault, not bad input."""
    try:
        return parse(raw)
    except pydantic.ValidationError as exc:
        logger.error("unreadable %s document: %s", what, exc)
        raise StorageFailure(f"unreadable {what} document") from exc


class ProfileRepository:
    """Profile documents and their secondary lookup keys."""
    def __init__(self, store: KeyValueStore):
        self.store = store

    def save(self, profile) -> None:
        """Persist the profile, then its roll-number or email index entry."""
        self.store.set(f"{USER_PREFIX}{profile.id}", profile.to_json())
        if isinstance(profile, schemas.StudentProfile):
            self.store.set(f"{STUDENT_ROLL_PREFIX}{profile.roll_number}", profile.id)
        else:
            self.store.set(f"{ALUMNI_EMAIL_PREFIX}{profile.email}", profile.id)

    def get(self, user_id: str) -> Optional[schemas.Profile]:
        """Return the profile for `user_id` or `None`."""
        raw = self.store.get(f"{USER_PREFIX}{user_id}")
        if raw is None:
            return None
        return _decode(schemas.profile_adapter.validate_python, raw, f"{USER_PREFIX}{user_id}")

    def id_for_roll_number(self, roll_number: str) -> Optional[str]:
        return self.store.get(f"{STUDENT_ROLL_PREFIX}{roll_number}")

    def id_for_email(self, email: str) -> Optional[str]:
        return self.store.get(f"{ALUMNI_EMAIL_PREFIX}{email}")

    def list_all(self) -> List[dict]:
        """Raw profile documents; the aggregator only needs their role."""
        return self.store.get_by_prefix(USER_PREFIX)


class ScholarshipRepository:
    """One scholarship request document per student."""
    def __init__(self, store: KeyValueStore):
        self.store = store

    def save(self, request: schemas.ScholarshipRequest) -> None:
        """Write (or overwrite) the student's request."""
        self.store.set(f"{SCHOLARSHIP_PREFIX}{request.student_id}", request.to_document())

    def get(self, student_id: str) -> Optional[schemas.ScholarshipRequest]:
        raw = self.store.get(f"{SCHOLARSHIP_PREFIX}{student_id}")
        if raw is None:
            return None
        return _decode(schemas.ScholarshipRequest.model_validate, raw, f"{SCHOLARSHIP_PREFIX}{student_id}")

    def list_all(self) -> List[schemas.ScholarshipRequest]:
        return [
            _decode(schemas.ScholarshipRequest.model_validate, raw, "scholarship")
            for raw in self.store.get_by_prefix(SCHOLARSHIP_PREFIX)
        ]


class ContributionRepository:
    """Append-only ledger of contributions. There is no update or delete."""
    def __init__(self, store: KeyValueStore):
        self.store = store

    def append(self, contribution: schemas.Contribution) -> schemas.Contribution:
        self.store.set(f"{CONTRIBUTION_PREFIX}{contribution.id}", contribution.to_json())
        return contribution

    def iter_all(self) -> Iterator[schemas.Contribution]:
        for raw in self.store.get_by_prefix(CONTRIBUTION_PREFIX):
            yield _decode(schemas.Contribution.model_validate, raw, "contribution")

    def list_for_request(self, request: schemas.ScholarshipRequest) -> List[schemas.Contribution]:
        """Ledger entries that count toward `request`, oldest first."""
        out = [
            c for c in self.iter_all()
            if c.student_id == request.student_id and c.request_id == request.request_id
        ]
        out.sort(key=lambda c: c.created_at)
        return out
