"""Data models for policies, credentials, jobs and webhook events."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class JobStatus(str, Enum):
    """Job status values."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(str, Enum):
    """Known job kinds."""

    SYNC_USAGE = "sync-usage"
    VALIDATE_WEBHOOKS = "validate-webhooks"
    RECONCILE_CREDENTIALS = "reconcile-credentials"


RECURRING_JOB_TYPES = (JobType.SYNC_USAGE, JobType.VALIDATE_WEBHOOKS)


class CredentialStatus(str, Enum):
    """Lifecycle of a provider API key."""

    ACTIVE = "active"
    RETIRING = "retiring"
    REVOKED = "revoked"


class WebhookProvider(str, Enum):
    MAILCHANNELS = "mailchannels"
    AGENTMAIL = "agentmail"


def _normalize_names(values: List[str]) -> List[str]:
    cleaned = []
    for value in values:
        value = value.strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


class SendPolicy(BaseModel):
    """Per-instance send policy."""

    max_recipients_per_message: int = Field(gt=0)
    per_minute_limit: int = Field(gt=0)
    daily_cap: int = Field(gt=0)
    required_headers: List[str] = Field(default_factory=list)
    allow_list: List[str] = Field(default_factory=list)
    deny_list: List[str] = Field(default_factory=list)

    @field_validator("required_headers", "allow_list", "deny_list")
    @classmethod
    def _dedupe(cls, values: List[str]) -> List[str]:
        return _normalize_names(values)


class OutboundMessage(BaseModel):
    """A candidate send as seen by the policy gate and the gateway."""

    from_email: str
    to: List[str]
    subject: str = ""
    text_body: str = ""
    html_body: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)


class Job:
    """Represents a job record."""

    def __init__(
        self,
        id,
        job_type: JobType,
        payload: Dict[str, Any],
        status: JobStatus,
        run_at: datetime,
        attempts: int = 0,
        max_attempts: int = 3,
        last_error: Optional[str] = None,
        lease_expires_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        # Rows written by an older release may carry a tag we no longer know.
        try:
            self.job_type = JobType(job_type)
        except ValueError:
            self.job_type = job_type
        self.payload = payload
        self.status = JobStatus(status) if isinstance(status, str) else status
        self.run_at = run_at
        self.attempts = attempts
        self.max_attempts = max_attempts
        self.last_error = last_error
        self.lease_expires_at = lease_expires_at
        self.created_at = created_at
        self.updated_at = updated_at

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary for JSON serialization."""
        job_type = self.job_type.value if isinstance(self.job_type, JobType) else self.job_type
        return {
            "id": str(self.id),
            "job_type": job_type,
            "payload": self.payload,
            "status": self.status.value,
            "run_at": self.run_at.isoformat() if self.run_at else None,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "lease_expires_at": (
                self.lease_expires_at.isoformat() if self.lease_expires_at else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Subaccount:
    """Provider-side sub-identity owned by one instance."""

    def __init__(
        self,
        id,
        owner_id: str,
        handle: str,
        enabled: bool = True,
        limit: int = -1,
        usage_current_period: int = 0,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.owner_id = owner_id
        self.handle = handle
        self.enabled = enabled
        self.limit = limit
        self.usage_current_period = usage_current_period
        self.created_at = created_at
        self.updated_at = updated_at


class SubaccountKey:
    """A provider API key for a subaccount."""

    def __init__(
        self,
        id,
        owner_id: str,
        subaccount_handle: str,
        provider_key_id: str,
        redacted_value: str,
        status: CredentialStatus,
        encrypted_value: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.owner_id = owner_id
        self.subaccount_handle = subaccount_handle
        self.provider_key_id = provider_key_id
        self.redacted_value = redacted_value
        self.status = CredentialStatus(status) if isinstance(status, str) else status
        self.encrypted_value = encrypted_value
        self.created_at = created_at
        self.updated_at = updated_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "owner_id": self.owner_id,
            "subaccount_handle": self.subaccount_handle,
            "provider_key_id": self.provider_key_id,
            "redacted_value": self.redacted_value,
            "status": self.status.value,
            "has_stored_secret": self.encrypted_value is not None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ProviderConnection:
    """An owner's parent credential for the mail-sending provider."""

    def __init__(self, owner_id: str, api_key: str, account_id: str):
        self.owner_id = owner_id
        self.api_key = api_key
        self.account_id = account_id


class WebhookEvent:
    """A stored inbound provider callback."""

    def __init__(
        self,
        id,
        provider: str,
        provider_event_id: str,
        event_type: str,
        payload: Any,
        dedupe_key: str,
        owner_id: Optional[str] = None,
        received_at: Optional[datetime] = None,
        processed_at: Optional[datetime] = None,
    ):
        self.id = id
        self.provider = provider
        self.provider_event_id = provider_event_id
        self.event_type = event_type
        self.payload = payload
        self.dedupe_key = dedupe_key
        self.owner_id = owner_id
        self.received_at = received_at
        self.processed_at = processed_at
