"""Database schema DDL for sendguard."""

SEND_POLICY_DDL = """
CREATE TABLE send_policies (
  id                          UUID PRIMARY KEY,
  owner_id                    TEXT NOT NULL UNIQUE,
  max_recipients_per_message  INT NOT NULL CHECK (max_recipients_per_message > 0),
  per_minute_limit            INT NOT NULL CHECK (per_minute_limit > 0),
  daily_cap                   INT NOT NULL CHECK (daily_cap > 0),
  required_headers            JSONB NOT NULL DEFAULT '[]',
  allow_list                  JSONB NOT NULL DEFAULT '[]',
  deny_list                   JSONB NOT NULL DEFAULT '[]',
  created_at                  TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at                  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE rate_limit_buckets (
  id          UUID PRIMARY KEY,
  owner_id    TEXT NOT NULL,
  window_key  TEXT NOT NULL,
  count       INT NOT NULL DEFAULT 0,
  created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
  UNIQUE (owner_id, window_key)
);

CREATE TABLE send_log (
  id                   UUID PRIMARY KEY,
  owner_id             TEXT NOT NULL,
  request_id           TEXT NOT NULL,
  provider_request_id  TEXT,
  from_email           TEXT NOT NULL,
  recipients           JSONB NOT NULL,
  subject_hash         TEXT NOT NULL,
  provider_status      TEXT NOT NULL,
  created_at           TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX idx_send_log_owner_created
ON send_log (owner_id, created_at);
"""

CREDENTIALS_DDL = """
CREATE TABLE provider_connections (
  owner_id           TEXT PRIMARY KEY,
  encrypted_api_key  TEXT NOT NULL,
  account_id         TEXT NOT NULL,
  created_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at         TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE subaccounts (
  id                    UUID PRIMARY KEY,
  owner_id              TEXT NOT NULL UNIQUE,
  handle                TEXT NOT NULL UNIQUE,
  enabled               BOOLEAN NOT NULL DEFAULT TRUE,
  "limit"               INT NOT NULL DEFAULT -1,
  usage_current_period  INT NOT NULL DEFAULT 0,
  created_at            TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at            TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE subaccount_keys (
  id                 UUID PRIMARY KEY,
  owner_id           TEXT NOT NULL,
  subaccount_handle  TEXT NOT NULL REFERENCES subaccounts (handle) ON DELETE CASCADE,
  provider_key_id    TEXT NOT NULL,
  redacted_value     TEXT NOT NULL,
  encrypted_value    TEXT,
  status             TEXT NOT NULL CHECK (status IN ('active', 'retiring', 'revoked')),
  created_at         TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
  updated_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
  UNIQUE (subaccount_handle, provider_key_id)
);

-- Single active key and single retiring key per subaccount
CREATE UNIQUE INDEX idx_subaccount_keys_one_active
ON subaccount_keys (owner_id, subaccount_handle)
WHERE status = 'active';

CREATE UNIQUE INDEX idx_subaccount_keys_one_retiring
ON subaccount_keys (owner_id, subaccount_handle)
WHERE status = 'retiring';
"""

JOB_QUEUE_DDL = """
CREATE TABLE job_queue (
  id            UUID PRIMARY KEY,
  job_type      TEXT NOT NULL,
  payload       JSONB NOT NULL,
  status        TEXT NOT NULL CHECK (status IN ('queued', 'running', 'failed', 'completed')),
  run_at        TIMESTAMPTZ NOT NULL,
  attempts      INT NOT NULL DEFAULT 0 CHECK (attempts >= 0),
  max_attempts  INT NOT NULL DEFAULT 3 CHECK (max_attempts > 0),
  last_error    TEXT,
  lease_expires_at TIMESTAMPTZ,
  created_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at    TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX idx_job_queue_queued_run_at
ON job_queue (run_at, id)
WHERE status = 'queued';

CREATE INDEX idx_job_queue_type_status
ON job_queue (job_type, status);

-- Lets the reaper find running jobs whose scheduler went away
CREATE INDEX idx_job_queue_running_lease
ON job_queue (lease_expires_at)
WHERE status = 'running';
"""

WEBHOOK_EVENTS_DDL = """
CREATE TABLE webhook_events (
  id                 UUID PRIMARY KEY,
  provider           TEXT NOT NULL CHECK (provider IN ('mailchannels', 'agentmail')),
  provider_event_id  TEXT NOT NULL,
  event_type         TEXT NOT NULL,
  owner_id           TEXT,
  payload            JSONB NOT NULL,
  dedupe_key         TEXT NOT NULL,
  received_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
  processed_at       TIMESTAMPTZ
);

CREATE UNIQUE INDEX idx_webhook_events_dedupe_key
ON webhook_events (dedupe_key);

CREATE INDEX idx_webhook_events_provider_event
ON webhook_events (provider, provider_event_id);
"""

SCHEMA_DDL = SEND_POLICY_DDL + CREDENTIALS_DDL + JOB_QUEUE_DDL + WEBHOOK_EVENTS_DDL
