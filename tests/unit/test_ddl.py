"""Unit tests for DDL module."""

import re

from sendguard.ddl import (
    CREDENTIALS_DDL,
    JOB_QUEUE_DDL,
    SCHEMA_DDL,
    SEND_POLICY_DDL,
    WEBHOOK_EVENTS_DDL,
)


def test_schema_ddl_contains_every_table():
    for table in (
        "send_policies",
        "rate_limit_buckets",
        "send_log",
        "provider_connections",
        "subaccounts",
        "subaccount_keys",
        "job_queue",
        "webhook_events",
    ):
        assert f"CREATE TABLE {table}" in SCHEMA_DDL


def test_schema_ddl_is_concatenation_of_parts():
    assert SCHEMA_DDL == SEND_POLICY_DDL + CREDENTIALS_DDL + JOB_QUEUE_DDL + WEBHOOK_EVENTS_DDL


def test_rate_buckets_unique_per_owner_and_window():
    assert "UNIQUE (owner_id, window_key)" in SEND_POLICY_DDL


def test_policy_is_unique_per_owner():
    assert re.search(r"owner_id\s+TEXT NOT NULL UNIQUE", SEND_POLICY_DDL)


def test_single_active_and_retiring_key_indexes():
    assert "CREATE UNIQUE INDEX idx_subaccount_keys_one_active" in CREDENTIALS_DDL
    assert "WHERE status = 'active'" in CREDENTIALS_DDL
    assert "CREATE UNIQUE INDEX idx_subaccount_keys_one_retiring" in CREDENTIALS_DDL
    assert "WHERE status = 'retiring'" in CREDENTIALS_DDL


def test_job_queue_constraints():
    assert "CHECK (status IN ('queued', 'running', 'failed', 'completed'))" in JOB_QUEUE_DDL
    assert "CHECK (attempts >= 0)" in JOB_QUEUE_DDL
    assert "CHECK (max_attempts > 0)" in JOB_QUEUE_DDL


def test_webhook_dedupe_key_is_unique():
    assert "CREATE UNIQUE INDEX idx_webhook_events_dedupe_key" in WEBHOOK_EVENTS_DDL
