from crosslister.models.base import Base  # noqa: F401

from crosslister.models.job import Job, JobAttempt  # noqa: F401
from crosslister.models.platform_listing import PlatformListing  # noqa: F401
from crosslister.models.platform_session import PlatformSession  # noqa: F401
from crosslister.models.audit_log import AuditLog  # noqa: F401
