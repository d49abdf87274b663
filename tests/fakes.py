"""In-memory stand-ins for the Postgres stores, used by unit tests."""

import asyncio
import copy
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import uuid4

from sendguard.errors import JobNotFoundError
from sendguard.store import LEASE_EXPIRED_ERROR
from sendguard.models import (
    CredentialStatus,
    Job,
    JobStatus,
    SendPolicy,
    Subaccount,
    SubaccountKey,
    WebhookEvent,
)


class FakeClock:
    """Settable clock; call it to read the time."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 5, 14, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakePolicyStore:
    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.policies: dict[str, SendPolicy] = {}
        self.buckets: dict[tuple, int] = {}
        self.send_log: list[dict[str, Any]] = []

    async def upsert_policy(self, owner_id, policy):
        self.policies[owner_id] = policy
        return policy

    async def get_policy(self, owner_id):
        return self.policies.get(owner_id)

    async def increment_window_count(self, owner_id, window_key, limit):
        count = self.buckets.get((owner_id, window_key))
        if count is None:
            self.buckets[(owner_id, window_key)] = 1
            return 1
        if count >= limit:
            return None
        self.buckets[(owner_id, window_key)] = count + 1
        return count + 1

    async def get_window_count(self, owner_id, window_key):
        return self.buckets.get((owner_id, window_key), 0)

    async def count_sends_since(self, owner_id, since):
        return sum(
            1
            for entry in self.send_log
            if entry["owner_id"] == owner_id and entry["created_at"] >= since
        )

    async def append_send_log(
        self,
        owner_id,
        request_id,
        from_email,
        recipients,
        subject_hash,
        provider_status,
        provider_request_id=None,
    ):
        entry = {
            "id": uuid4(),
            "owner_id": owner_id,
            "request_id": request_id,
            "provider_request_id": provider_request_id,
            "from_email": from_email,
            "recipients": list(recipients),
            "subject_hash": subject_hash,
            "provider_status": provider_status,
            "created_at": self.clock(),
        }
        self.send_log.append(entry)
        return entry


class FakeJobStore:
    def __init__(self):
        self.jobs: dict[Any, Job] = {}

    def _new_job(self, id, job_type, payload, run_at, max_attempts):
        job = Job(
            id=id,
            job_type=job_type,
            payload=payload,
            status=JobStatus.QUEUED,
            run_at=run_at,
            attempts=0,
            max_attempts=max_attempts,
            created_at=run_at,
            updated_at=run_at,
        )
        self.jobs[id] = job
        return copy.copy(job)

    async def insert_job(self, id, job_type, payload, run_at, max_attempts):
        return self._new_job(id, job_type, payload, run_at, max_attempts)

    async def insert_recurring_job_if_absent(self, id, job_type, now, horizon, max_attempts):
        for job in self.jobs.values():
            if (
                job.job_type == job_type
                and (
                    (job.status == JobStatus.QUEUED and job.run_at < horizon)
                    or (
                        job.status == JobStatus.RUNNING
                        and job.lease_expires_at is not None
                        and job.lease_expires_at > now
                    )
                )
            ):
                return None
        return self._new_job(id, job_type, {}, now, max_attempts)

    async def get_job(self, job_id):
        if job_id not in self.jobs:
            raise JobNotFoundError(job_id)
        return copy.copy(self.jobs[job_id])

    async def list_jobs(self, job_type=None, status=None, limit=50):
        jobs = [
            copy.copy(job)
            for job in self.jobs.values()
            if (job_type is None or job.job_type == job_type)
            and (status is None or job.status == status)
        ]
        return jobs[:limit]

    async def claim_due_jobs(self, limit, now, lease_expires_at):
        due = sorted(
            (
                job
                for job in self.jobs.values()
                if job.status == JobStatus.QUEUED and job.run_at <= now
            ),
            key=lambda job: (job.run_at, str(job.id)),
        )[:limit]
        for job in due:
            job.status = JobStatus.RUNNING
            job.lease_expires_at = lease_expires_at
        return [copy.copy(job) for job in due]

    async def update_job_completed(self, job_id, attempts):
        job = self.jobs[job_id]
        if job.status == JobStatus.RUNNING:
            job.status = JobStatus.COMPLETED
            job.attempts = attempts
            job.lease_expires_at = None

    async def update_job_retry(self, job_id, attempts, error, next_run_at):
        job = self.jobs[job_id]
        if job.status == JobStatus.RUNNING:
            job.status = JobStatus.QUEUED
            job.attempts = attempts
            job.last_error = error
            job.run_at = next_run_at
            job.lease_expires_at = None

    async def update_job_failed(self, job_id, attempts, error):
        job = self.jobs[job_id]
        if job.status == JobStatus.RUNNING:
            job.status = JobStatus.FAILED
            job.attempts = attempts
            job.last_error = error
            job.lease_expires_at = None

    async def revert_expired_leases(self, now):
        settled = 0
        for job in self.jobs.values():
            if job.status != JobStatus.RUNNING or job.lease_expires_at is None:
                continue
            if job.lease_expires_at >= now:
                continue
            job.last_error = LEASE_EXPIRED_ERROR
            job.lease_expires_at = None
            if job.attempts + 1 < job.max_attempts:
                job.status = JobStatus.QUEUED
                job.attempts += 1
                job.run_at = now
            else:
                job.status = JobStatus.FAILED
                job.attempts = job.max_attempts
            settled += 1
        return settled


class FakeCredentialStore:
    """Mirrors the unique indexes of the real schema so violations surface in tests."""

    def __init__(self):
        self.connections: dict[str, dict[str, str]] = {}
        self.subaccounts: list[Subaccount] = []
        self.keys: list[SubaccountKey] = []
        self._locks: dict[tuple, asyncio.Lock] = {}

    @asynccontextmanager
    async def subaccount_lock(self, owner_id, handle):
        lock = self._locks.setdefault((owner_id, handle), asyncio.Lock())
        async with lock:
            yield None

    async def upsert_connection(self, owner_id, encrypted_api_key, account_id):
        self.connections[owner_id] = {
            "owner_id": owner_id,
            "encrypted_api_key": encrypted_api_key,
            "account_id": account_id,
        }

    async def get_connection(self, owner_id):
        return self.connections.get(owner_id)

    async def list_connection_owners(self):
        return sorted(self.connections)

    async def get_subaccount(self, owner_id, handle=None):
        for subaccount in self.subaccounts:
            if subaccount.owner_id == owner_id and (
                handle is None or subaccount.handle == handle
            ):
                return subaccount
        return None

    async def list_subaccounts(self):
        return list(self.subaccounts)

    async def create_subaccount_with_key(
        self,
        owner_id,
        handle,
        limit,
        provider_key_id,
        redacted_value,
        encrypted_value,
        enabled=True,
    ):
        subaccount = Subaccount(
            id=uuid4(), owner_id=owner_id, handle=handle, enabled=enabled, limit=limit
        )
        self.subaccounts.append(subaccount)
        self._insert_key(owner_id, handle, provider_key_id, redacted_value, encrypted_value)
        return subaccount

    async def update_usage(self, subaccount_id, usage):
        for subaccount in self.subaccounts:
            if subaccount.id == subaccount_id:
                subaccount.usage_current_period = usage

    async def set_subaccount_enabled(self, subaccount_id, enabled):
        for subaccount in self.subaccounts:
            if subaccount.id == subaccount_id:
                subaccount.enabled = enabled

    async def set_subaccount_limit(self, subaccount_id, limit):
        for subaccount in self.subaccounts:
            if subaccount.id == subaccount_id:
                subaccount.limit = limit

    async def list_keys(self, owner_id, handle, conn=None):
        return [
            copy.copy(key)
            for key in reversed(self.keys)
            if key.owner_id == owner_id and key.subaccount_handle == handle
        ]

    async def get_active_key(self, owner_id, handle):
        for key in self.keys:
            if (
                key.owner_id == owner_id
                and key.subaccount_handle == handle
                and key.status == CredentialStatus.ACTIVE
            ):
                return copy.copy(key)
        return None

    async def mark_key_revoked(self, key_id, conn=None):
        for key in self.keys:
            if key.id == key_id:
                key.status = CredentialStatus.REVOKED

    async def demote_active_and_insert(
        self, owner_id, handle, provider_key_id, redacted_value, encrypted_value, conn=None
    ):
        demoted = []
        for key in self.keys:
            if (
                key.owner_id == owner_id
                and key.subaccount_handle == handle
                and key.status == CredentialStatus.ACTIVE
            ):
                key.status = CredentialStatus.RETIRING
                demoted.append(key)
        try:
            return self._insert_key(
                owner_id, handle, provider_key_id, redacted_value, encrypted_value
            )
        except Exception:
            for key in demoted:
                key.status = CredentialStatus.ACTIVE
            raise

    def statuses(self, owner_id, handle):
        """Key statuses for a subaccount, newest first."""
        return [
            key.status
            for key in reversed(self.keys)
            if key.owner_id == owner_id and key.subaccount_handle == handle
        ]

    def _insert_key(self, owner_id, handle, provider_key_id, redacted_value, encrypted_value):
        for status in (CredentialStatus.ACTIVE, CredentialStatus.RETIRING):
            same = [
                key
                for key in self.keys
                if key.owner_id == owner_id
                and key.subaccount_handle == handle
                and key.status == status
            ]
            if len(same) > (0 if status == CredentialStatus.ACTIVE else 1):
                raise AssertionError(f"more than one {status.value} key for {handle}")
        key = SubaccountKey(
            id=uuid4(),
            owner_id=owner_id,
            subaccount_handle=handle,
            provider_key_id=provider_key_id,
            redacted_value=redacted_value,
            status=CredentialStatus.ACTIVE,
            encrypted_value=encrypted_value,
        )
        self.keys.append(key)
        return copy.copy(key)


class FakeWebhookEventStore:
    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.events: dict[Any, WebhookEvent] = {}
        self.mark_calls = 0

    async def find_by_dedupe_key(self, dedupe_key):
        return self._by_dedupe_key(dedupe_key)

    def _by_dedupe_key(self, dedupe_key):
        for event in self.events.values():
            if event.dedupe_key == dedupe_key:
                return event
        return None

    async def find_by_provider_event(self, provider, provider_event_id):
        for event in self.events.values():
            if event.provider == provider and event.provider_event_id == provider_event_id:
                return event
        return None

    async def get_event(self, event_id):
        return self.events.get(event_id)

    async def insert_event(
        self, id, provider, provider_event_id, event_type, payload, dedupe_key, owner_id=None
    ):
        if self._by_dedupe_key(dedupe_key) is not None:
            return False
        self.events[id] = WebhookEvent(
            id=id,
            provider=provider,
            provider_event_id=provider_event_id,
            event_type=event_type,
            payload=payload,
            dedupe_key=dedupe_key,
            owner_id=owner_id,
            received_at=self.clock(),
        )
        return True

    async def mark_processed(self, event_id):
        self.mark_calls += 1
        event = self.events.get(event_id)
        if event is None or event.processed_at is not None:
            return False
        event.processed_at = self.clock()
        return True

    async def list_events_for_owner(self, owner_id, limit=50):
        return [e for e in self.events.values() if e.owner_id == owner_id][:limit]
