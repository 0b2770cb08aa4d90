"""001 – Leave engine schema: policies, leave types, holidays, requests, audit.

Revision ID: 001_leave_engine_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+05:30
"""

from alembic import op

# Revision identifiers
revision = "001_leave_engine_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("leave_status", ["pending", "approved", "rejected", "cancelled"]),
]

TABLES_IN_DROP_ORDER = [
    "audit_trail",
    "leave_breakup_entries",
    "leave_requests",
    "leave_type_defs",
    "policy_holidays",
    "leave_policies",
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# Upgrade
# ---------------------------------------------------------------------------

def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ══════════════════════════════════════════════════════════════════
    # Policy store
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE leave_policies (
            id                UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            company_id        UUID NOT NULL UNIQUE,
            year_start_month  INTEGER NOT NULL DEFAULT 1,
            week_off          JSONB NOT NULL DEFAULT '[0, 6]'::jsonb,
            version           INTEGER NOT NULL,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_policy_year_start_month
                CHECK (year_start_month BETWEEN 1 AND 12)
        )
    """)
    op.execute("CREATE INDEX ix_leave_policies_company_id ON leave_policies (company_id)")

    op.execute("""
        CREATE TABLE policy_holidays (
            id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            policy_id     UUID NOT NULL REFERENCES leave_policies(id) ON DELETE CASCADE,
            holiday_date  DATE NOT NULL,
            name          VARCHAR(100),
            CONSTRAINT uq_policy_holiday_date UNIQUE (policy_id, holiday_date)
        )
    """)

    op.execute("""
        CREATE TABLE leave_type_defs (
            id                        UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            policy_id                 UUID NOT NULL REFERENCES leave_policies(id) ON DELETE CASCADE,
            name                      VARCHAR(100) NOT NULL,
            short_code                VARCHAR(10) NOT NULL,
            max_per_request           NUMERIC(5, 1),
            min_per_request           NUMERIC(5, 1),
            max_instances_per_year    NUMERIC(5, 1),
            max_instances_per_month   NUMERIC(5, 1),
            requires_approval         BOOLEAN NOT NULL DEFAULT TRUE,
            requires_docs             BOOLEAN NOT NULL DEFAULT FALSE,
            docs_required_after_days  NUMERIC(5, 1) NOT NULL DEFAULT 0,
            exclude_holidays          BOOLEAN NOT NULL DEFAULT TRUE,
            is_active                 BOOLEAN NOT NULL DEFAULT TRUE,
            created_at                TIMESTAMPTZ DEFAULT NOW(),
            updated_at                TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_type_short_code UNIQUE (policy_id, short_code)
        )
    """)

    # ══════════════════════════════════════════════════════════════════
    # Leave requests
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE leave_requests (
            id                UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id       UUID NOT NULL,
            company_id        UUID NOT NULL,
            start_date        DATE NOT NULL,
            end_date          DATE NOT NULL,
            total_days        NUMERIC(5, 1) NOT NULL,
            reason            TEXT NOT NULL,
            is_half_day       BOOLEAN DEFAULT FALSE,
            half_day_type     VARCHAR(20),
            documents         JSONB NOT NULL DEFAULT '[]'::jsonb,
            status            leave_status NOT NULL DEFAULT 'pending',
            approved_by       UUID,
            approved_at       TIMESTAMPTZ,
            approver_comment  TEXT,
            rejected_by       UUID,
            rejected_at       TIMESTAMPTZ,
            rejection_reason  TEXT,
            cancelled_by      UUID,
            cancelled_at      TIMESTAMPTZ,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_request_range CHECK (end_date >= start_date)
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_requests_employee_range
            ON leave_requests (company_id, employee_id, start_date)
    """)
    op.execute("""
        CREATE INDEX ix_leave_requests_company_status
            ON leave_requests (company_id, status)
    """)

    op.execute("""
        CREATE TABLE leave_breakup_entries (
            id                UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            leave_request_id  UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            position          INTEGER NOT NULL,
            leave_type        VARCHAR(100) NOT NULL,
            short_code        VARCHAR(10) NOT NULL,
            days              NUMERIC(5, 1) NOT NULL,
            CONSTRAINT uq_breakup_position UNIQUE (leave_request_id, position)
        )
    """)
    op.execute("CREATE INDEX ix_breakup_short_code ON leave_breakup_entries (short_code)")

    # ══════════════════════════════════════════════════════════════════
    # Audit trail
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            actor_id     UUID,
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail (actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail (entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail (created_at)")


# ---------------------------------------------------------------------------
# Downgrade
# ---------------------------------------------------------------------------

def downgrade() -> None:
    for table in TABLES_IN_DROP_ORDER:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
