import enum


class EntityType(str, enum.Enum):
    USER = "user"
    COMPANY = "company"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    AWAITING_AUTH = "awaiting_auth"
    AUTHORIZED = "authorized"
    POPULATING = "populating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.AWAITING_AUTH}),
    JobStatus.AWAITING_AUTH: frozenset({JobStatus.AUTHORIZED, JobStatus.FAILED}),
    JobStatus.AUTHORIZED: frozenset({JobStatus.POPULATING, JobStatus.FAILED}),
    JobStatus.POPULATING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class CallerRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
