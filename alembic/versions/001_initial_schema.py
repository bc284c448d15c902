"""001 – Initial schema: directory, leave catalog, requests, ledger, policies.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+05:30
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("user_role", ["employee", "manager", "hr", "admin", "superadmin"]),
    ("leave_status", ["pending", "approved", "rejected", "cancelled", "on-hold"]),
    ("leave_session", ["Full Day", "First Half", "Second Half"]),
    (
        "ledger_transaction_type",
        [
            "opening",
            "allocated",
            "used",
            "restored",
            "carry_forward",
            "encashed",
            "adjustment",
            "custom_adjustment",
            "expired",
        ],
    ),
    ("notification_type", ["info", "action_required", "approval", "alert"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id           VARCHAR(64)  NOT NULL,
            employee_code        VARCHAR(30)  NOT NULL,
            external_user_id     VARCHAR(128),
            first_name           VARCHAR(100) NOT NULL,
            last_name            VARCHAR(100),
            email                VARCHAR(255),
            role                 user_role NOT NULL DEFAULT 'employee',
            department           VARCHAR(100),
            reporting_manager_id UUID REFERENCES employees(id),
            date_of_joining      DATE,
            basic_salary         NUMERIC(12,2) NOT NULL DEFAULT 0,
            is_active            BOOLEAN NOT NULL DEFAULT TRUE,
            is_deleted           BOOLEAN NOT NULL DEFAULT FALSE,
            created_at           TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at           TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_employee_code UNIQUE (company_id, employee_code)
        )
    """)
    op.execute("CREATE INDEX ix_employees_company_id ON employees(company_id)")
    op.execute("CREATE INDEX ix_employees_external_user_id ON employees(external_user_id)")
    op.execute(
        "CREATE INDEX ix_employees_company_manager ON employees(company_id, reporting_manager_id)"
    )

    # ── 2. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                       UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id               VARCHAR(64)  NOT NULL,
            code                     VARCHAR(30)  NOT NULL,
            name                     VARCHAR(100) NOT NULL,
            description              TEXT,
            default_quota            NUMERIC(6,2) NOT NULL DEFAULT 0,
            is_paid                  BOOLEAN NOT NULL DEFAULT TRUE,
            is_carry_forward_allowed BOOLEAN NOT NULL DEFAULT FALSE,
            is_encashable            BOOLEAN NOT NULL DEFAULT FALSE,
            is_active                BOOLEAN NOT NULL DEFAULT TRUE,
            is_deleted               BOOLEAN NOT NULL DEFAULT FALSE,
            created_at               TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at               TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_leave_type_code UNIQUE (company_id, code)
        )
    """)

    # ── 3. employee_leave_balances (ledger projection) ────────────────────
    op.execute("""
        CREATE TABLE employee_leave_balances (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id  VARCHAR(64) NOT NULL,
            employee_id UUID NOT NULL REFERENCES employees(id),
            leave_type  VARCHAR(30) NOT NULL,
            total       NUMERIC(7,2) NOT NULL DEFAULT 0,
            used        NUMERIC(7,2) NOT NULL DEFAULT 0,
            balance     NUMERIC(7,2) NOT NULL DEFAULT 0,
            updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_employee_leave_balance UNIQUE (employee_id, leave_type)
        )
    """)

    # ── 4. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id           VARCHAR(64) NOT NULL,
            employee_id          UUID NOT NULL REFERENCES employees(id),
            leave_type_id        UUID NOT NULL REFERENCES leave_types(id),
            leave_type           VARCHAR(30) NOT NULL,
            start_date           DATE NOT NULL,
            end_date             DATE NOT NULL,
            session              leave_session NOT NULL DEFAULT 'Full Day',
            duration             NUMERIC(6,1) NOT NULL,
            reason               TEXT,
            reporting_manager_id UUID REFERENCES employees(id),
            is_hr_fallback       BOOLEAN NOT NULL,
            status               leave_status NOT NULL DEFAULT 'pending',
            approved_by          VARCHAR(128),
            approved_at          TIMESTAMPTZ,
            approval_comments    TEXT,
            rejected_by          VARCHAR(128),
            rejected_at          TIMESTAMPTZ,
            rejection_reason     TEXT,
            cancelled_by         VARCHAR(128),
            cancelled_at         TIMESTAMPTZ,
            cancellation_reason  TEXT,
            balance_at_request   NUMERIC(7,2),
            attachments          JSONB NOT NULL DEFAULT '[]'::jsonb,
            created_by           VARCHAR(128),
            is_deleted           BOOLEAN NOT NULL DEFAULT FALSE,
            deleted_at           TIMESTAMPTZ,
            deleted_by           VARCHAR(128),
            created_at           TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at           TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_leave_request_dates CHECK (end_date >= start_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_employee_dates "
        "ON leave_requests(employee_id, start_date, end_date)"
    )
    op.execute(
        "CREATE INDEX ix_leave_requests_company_status ON leave_requests(company_id, status)"
    )

    # ── 5. custom_leave_policies ──────────────────────────────────────────
    op.execute("""
        CREATE TABLE custom_leave_policies (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id    VARCHAR(64)  NOT NULL,
            name          VARCHAR(150) NOT NULL,
            leave_type_id UUID NOT NULL REFERENCES leave_types(id),
            leave_type    VARCHAR(30)  NOT NULL,
            annual_quota  NUMERIC(6,2) NOT NULL,
            employee_ids  JSONB NOT NULL DEFAULT '[]'::jsonb,
            settings      JSONB NOT NULL DEFAULT '{}'::jsonb,
            is_active     BOOLEAN NOT NULL DEFAULT TRUE,
            is_deleted    BOOLEAN NOT NULL DEFAULT FALSE,
            created_by    VARCHAR(128),
            updated_by    VARCHAR(128),
            created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_custom_policy_quota CHECK (annual_quota > 0)
        )
    """)
    op.execute(
        "CREATE INDEX ix_custom_policies_lookup "
        "ON custom_leave_policies(company_id, leave_type, is_active)"
    )

    # ── 6. leave_ledger_entries (append-only) ─────────────────────────────
    op.execute("""
        CREATE TABLE leave_ledger_entries (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id        VARCHAR(64) NOT NULL,
            employee_id       UUID NOT NULL REFERENCES employees(id),
            leave_type        VARCHAR(30) NOT NULL,
            sequence          INTEGER NOT NULL,
            transaction_type  ledger_transaction_type NOT NULL,
            amount            NUMERIC(7,2) NOT NULL,
            balance_before    NUMERIC(7,2) NOT NULL,
            balance_after     NUMERIC(7,2) NOT NULL,
            transaction_date  TIMESTAMPTZ NOT NULL,
            financial_year    VARCHAR(16) NOT NULL,
            year              INTEGER NOT NULL,
            month             INTEGER NOT NULL,
            leave_request_id  UUID REFERENCES leave_requests(id),
            custom_policy_id  UUID,
            description       TEXT,
            details           JSONB,
            adjustment_reason TEXT,
            changed_by        VARCHAR(128),
            is_deleted        BOOLEAN NOT NULL DEFAULT FALSE,
            created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_ledger_chain_sequence UNIQUE (employee_id, leave_type, sequence)
        )
    """)
    op.execute(
        "CREATE INDEX ix_ledger_company_employee_year "
        "ON leave_ledger_entries(company_id, employee_id, year)"
    )
    op.execute(
        "CREATE INDEX ix_ledger_financial_year ON leave_ledger_entries(company_id, financial_year)"
    )

    # ── 7. notifications ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id   VARCHAR(64)  NOT NULL,
            recipient_id UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            type         notification_type NOT NULL DEFAULT 'info',
            title        VARCHAR(200) NOT NULL,
            message      TEXT NOT NULL,
            action_url   VARCHAR(500),
            entity_type  VARCHAR(50),
            entity_id    UUID,
            leave_request_id UUID,
            leave_type   VARCHAR(30),
            days         NUMERIC(7, 2),
            balance      NUMERIC(7, 2),
            is_read      BOOLEAN NOT NULL DEFAULT FALSE,
            read_at      TIMESTAMPTZ,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_notifications_recipient_read ON notifications(recipient_id, is_read)"
    )

    # ── 8. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id    VARCHAR(64)  NOT NULL,
            actor_id      UUID,
            actor_user_id VARCHAR(128),
            action        VARCHAR(50)  NOT NULL,
            entity_type   VARCHAR(50)  NOT NULL,
            entity_id     UUID NOT NULL,
            old_values    JSONB,
            new_values    JSONB,
            created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail(entity_type, entity_id)")
    op.execute(
        "CREATE INDEX ix_audit_trail_company_created ON audit_trail(company_id, created_at)"
    )

    # ── 9. app_settings ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE app_settings (
            key         VARCHAR(100) PRIMARY KEY,
            value       JSONB NOT NULL,
            description TEXT,
            updated_at  TIMESTAMPTZ DEFAULT NOW(),
            updated_by  VARCHAR(128)
        )
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "app_settings",
        "audit_trail",
        "notifications",
        "leave_ledger_entries",
        "custom_leave_policies",
        "leave_requests",
        "employee_leave_balances",
        "leave_types",
        "employees",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
