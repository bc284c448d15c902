"""Leave encashment — eligibility rules, payout and tenant-wide runs."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from hrleave.common.constants import LedgerTransactionType as TT
from hrleave.common.exceptions import ForbiddenException, ValidationException
from hrleave.encashment.service import (
    EncashmentEngine,
    check_eligibility,
    daily_rate,
    months_of_service,
)
from hrleave.leave.rules import EncashmentRule, default_leave_rules
from hrleave.ledger.service import LedgerService
from tests.conftest import COMPANY, actor_for, add_employee, set_projection, system_actor

EARNED = EncashmentRule(enabled=True, min_balance=5, max_encashment_days=15, require_min_service=12)


@pytest.fixture
def engine() -> EncashmentEngine:
    return EncashmentEngine(default_leave_rules())


def _check(rule=EARNED, *, months=24, balance="20", days="5", max_encashable="15", remaining="15"):
    return check_eligibility(
        rule, "earned",
        months=months,
        balance=Decimal(balance),
        days=Decimal(days),
        max_encashable=Decimal(max_encashable),
        remaining=Decimal(remaining),
    )


class TestHelpers:

    def test_months_of_service(self):
        assert months_of_service(date(2024, 3, 20), date(2025, 3, 1)) == 12
        assert months_of_service(date(2025, 3, 1), date(2024, 3, 1)) == 0
        assert months_of_service(None, date(2025, 3, 1)) == 0

    def test_daily_rate(self):
        assert daily_rate(Decimal("30000")) == Decimal("1000.00")
        assert daily_rate(Decimal("25000")) == Decimal("833.33")


class TestEligibility:

    def test_eligible(self):
        assert _check() == (None, None)

    def test_not_encashable(self):
        assert _check(EncashmentRule())[1] == "encashment-not-eligible"

    def test_min_service(self):
        reason, code = _check(months=6)
        assert code == "encashment-min-service"
        assert reason == "Minimum 12 months of service required"

    def test_min_balance(self):
        reason, code = _check(balance="3")
        assert code == "encashment-min-balance"
        assert reason == "Minimum 5 days balance required"

    def test_nothing_to_encash(self):
        assert _check(days="0")[1] == "encashment-nothing-to-encash"

    def test_over_cap(self):
        reason, code = _check(days="12", max_encashable="10")
        assert code == "encashment-max-days"
        assert reason == "Cannot encash more than 10 days"

    def test_annual_limit(self):
        reason, code = _check(days="10", remaining="5")
        assert code == "encashment-annual-limit"
        assert reason == "Annual encashment limit exceeded. Remaining: 5 days"


# ═════════════════════════════════════════════════════════════════════
# Engine
# ═════════════════════════════════════════════════════════════════════


class TestCalculate:

    async def test_defaults_to_maximum(self, db, leave_types, employee, engine):
        calc = await engine.calculate(db, COMPANY, employee.id, "earned")

        assert calc.eligible is True
        assert calc.current_balance == Decimal("15")
        assert calc.max_encashable_days == Decimal("10")
        assert calc.days_requested == Decimal("10")
        assert calc.daily_rate == Decimal("1000.00")
        assert calc.encashment_amount == Decimal("10000.00")

    async def test_casual_not_encashable(self, db, leave_types, employee, engine):
        calc = await engine.calculate(db, COMPANY, employee.id, "casual", Decimal("1"))
        assert calc.eligible is False
        assert calc.code == "encashment-not-eligible"

    async def test_calculate_never_writes(self, db, leave_types, employee, engine):
        await engine.calculate(db, COMPANY, employee.id, "earned")
        assert await LedgerService.get_chain(db, employee.id) == []


class TestExecute:

    async def test_debits_ledger(self, db, leave_types, employee, engine):
        result = await engine.execute(
            db, system_actor(), employee.id, "earned", Decimal("4"), reason="Year-end payout",
        )
        assert result.balance_after == Decimal("11")
        assert result.calculation.encashment_amount == Decimal("4000.00")

        entries = await LedgerService.get_entries_by_type(db, COMPANY, TT.encashed, employee_id=employee.id)
        assert len(entries) == 1
        assert entries[0].amount == Decimal("-4")
        assert entries[0].details["daily_rate"] == "1000.00"
        assert entries[0].adjustment_reason == "Year-end payout"

    async def test_annual_limit_counts_earlier_encashments(self, db, leave_types, employee, engine):
        await set_projection(db, employee, "earned", total=Decimal("30"))
        await engine.execute(db, system_actor(), employee.id, "earned", Decimal("10"))

        with pytest.raises(ValidationException) as exc:
            await engine.execute(db, system_actor(), employee.id, "earned", Decimal("10"))
        assert exc.value.code == "encashment-annual-limit"
        assert exc.value.errors["days"] == ["Annual encashment limit exceeded. Remaining: 5 days"]
        assert Decimal(exc.value.context["remaining_encashment_days"]) == Decimal("5")

        calc = await engine.calculate(db, COMPANY, employee.id, "earned")
        assert calc.encashed_this_year == Decimal("10")
        assert calc.days_requested == Decimal("5")

    async def test_new_joiner_is_rejected(self, db, leave_types, engine):
        newbie = await add_employee(db, date_of_joining=date.today() - timedelta(days=60))
        with pytest.raises(ValidationException) as exc:
            await engine.execute(db, system_actor(), newbie.id, "earned", Decimal("2"))
        assert exc.value.code == "encashment-min-service"

    async def test_requires_capability(self, db, leave_types, employee, engine):
        with pytest.raises(ForbiddenException):
            await engine.execute(db, actor_for(employee), employee.id, "earned", Decimal("1"))

    async def test_history_and_company_summary(self, db, leave_types, employee, manager, engine):
        await engine.execute(db, system_actor(), employee.id, "earned", Decimal("2"))
        await engine.execute(db, system_actor(), employee.id, "earned", Decimal("3"))
        await engine.execute(db, system_actor(), manager.id, "earned", Decimal("1"))

        history = await EncashmentEngine.get_history(db, COMPANY, employee.id)
        assert [i.days for i in history.items] == [Decimal("2"), Decimal("3")]
        assert history.total_amount == Decimal("5000.00")

        summary = await EncashmentEngine.get_company_summary(db, COMPANY)
        assert [e.employee_id for e in summary.employees] == [employee.id, manager.id]
        assert summary.employees[0].encashment_count == 2
        assert summary.employees[0].name == "Eli Navarro"
        assert summary.total_days == Decimal("6")


class TestCompanyRun:

    async def test_ineligible_employees_are_skipped(self, db, session_factory, leave_types, employee, manager, engine):
        await add_employee(db, first_name="New", date_of_joining=date.today() - timedelta(days=30))
        await db.commit()

        report = await engine.execute_for_company(session_factory, system_actor(), "earned")

        assert report.total_employees == 3
        assert (report.succeeded, report.skipped, report.failed) == (2, 1, 0)
        assert report.total_days == Decimal("20")

        db.expire_all()
        summary = await EncashmentEngine.get_company_summary(db, COMPANY)
        assert {e.employee_id for e in summary.employees} == {employee.id, manager.id}
