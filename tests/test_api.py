"""HTTP surface — auth, problem+json errors and the main leave flows end to end."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from hrleave.common.constants import UserRole
from tests.conftest import (
    OTHER_COMPANY,
    add_employee,
    auth_headers_for,
    create_access_token,
)

START = date.today() + timedelta(days=20)


def _leave_body(days: int = 3, offset: int = 0, leave_type: str = "casual") -> dict:
    start = START + timedelta(days=offset)
    return {
        "leave_type": leave_type,
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=days - 1)).isoformat(),
        "reason": "Family trip",
    }


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ═════════════════════════════════════════════════════════════════════
# Health & auth
# ═════════════════════════════════════════════════════════════════════


class TestAuth:

    async def test_health(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    async def test_missing_token(self, client):
        resp = await client.get("/api/v1/leave/types")
        assert resp.status_code == 401

    async def test_expired_token(self, client, db, employee):
        await db.commit()
        token = create_access_token(employee.external_user_id, expired=True)
        resp = await client.get("/api/v1/leave/types", headers=_bearer(token))
        assert resp.status_code == 401

    async def test_refresh_token_rejected(self, client, db, employee):
        await db.commit()
        token = create_access_token(employee.external_user_id, token_type="refresh")
        resp = await client.get("/api/v1/leave/types", headers=_bearer(token))
        assert resp.status_code == 401

    async def test_unknown_employee_user(self, client):
        token = create_access_token("user-nobody")
        resp = await client.get("/api/v1/leave/types", headers=_bearer(token))
        assert resp.status_code == 401

    async def test_service_account_without_employee(self, client, db, leave_types):
        await db.commit()
        token = create_access_token("svc-payroll", role=UserRole.admin)
        resp = await client.get("/api/v1/leave/types", headers=_bearer(token))
        assert resp.status_code == 200

        resp = await client.get("/api/v1/notifications", headers=_bearer(token))
        assert resp.status_code == 403
        assert resp.json()["code"] == "no-employee-record"


# ═════════════════════════════════════════════════════════════════════
# Leave requests
# ═════════════════════════════════════════════════════════════════════


class TestLeaveFlow:

    async def test_file_approve_and_balance(self, client, db, leave_types, employee, manager):
        await db.commit()

        resp = await client.post(
            "/api/v1/leave/requests", json=_leave_body(), headers=auth_headers_for(employee),
        )
        assert resp.status_code == 201
        created = resp.json()
        assert created["status"] == "pending"
        assert created["session"] == "Full Day"
        assert Decimal(created["duration"]) == 3

        resp = await client.put(
            f"/api/v1/leave/requests/{created['id']}/approve",
            json={"comments": "Approved"},
            headers=auth_headers_for(manager),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"

        resp = await client.get("/api/v1/leave/balances", headers=auth_headers_for(employee))
        balances = {b["leave_type"]: b for b in resp.json()}
        assert Decimal(balances["casual"]["balance"]) == Decimal("9")
        assert balances["casual"]["balance_source"] == "ledger"

    async def test_errors_are_problem_json(self, client, db, leave_types, employee, other_manager):
        await db.commit()
        created = (await client.post(
            "/api/v1/leave/requests", json=_leave_body(), headers=auth_headers_for(employee),
        )).json()

        resp = await client.put(
            f"/api/v1/leave/requests/{created['id']}/approve",
            json={}, headers=auth_headers_for(other_manager),
        )
        assert resp.status_code == 403
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["code"] == "not-assigned-manager"

        resp = await client.post(
            "/api/v1/leave/requests", json=_leave_body(offset=1), headers=auth_headers_for(employee),
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "overlapping-leave"
        assert body["conflicting_request_id"] == created["id"]

    async def test_insufficient_balance_is_409(self, client, db, leave_types, employee, manager):
        await db.commit()
        created = (await client.post(
            "/api/v1/leave/requests", json=_leave_body(days=14), headers=auth_headers_for(employee),
        )).json()

        resp = await client.put(
            f"/api/v1/leave/requests/{created['id']}/approve",
            json={}, headers=auth_headers_for(manager),
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "insufficient-balance"
        assert Decimal(body["shortfall"]) == Decimal("2")

    async def test_request_validation(self, client, db, leave_types, employee):
        await db.commit()
        resp = await client.post(
            "/api/v1/leave/requests",
            json={"leave_type": "casual", "end_date": START.isoformat()},
            headers=auth_headers_for(employee),
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "request-validation"
        assert "start_date" in resp.json()["errors"]

    async def test_reject_cancel_and_delete(self, client, db, leave_types, employee, manager):
        await db.commit()
        headers = auth_headers_for(employee)
        first = (await client.post("/api/v1/leave/requests", json=_leave_body(), headers=headers)).json()
        second = (await client.post(
            "/api/v1/leave/requests", json=_leave_body(offset=10), headers=headers,
        )).json()

        resp = await client.put(
            f"/api/v1/leave/requests/{first['id']}/reject",
            json={}, headers=auth_headers_for(manager),
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "reason-required"

        resp = await client.put(
            f"/api/v1/leave/requests/{first['id']}/cancel",
            json={"reason": "Plans changed"}, headers=headers,
        )
        assert resp.json()["status"] == "cancelled"

        resp = await client.delete(f"/api/v1/leave/requests/{second['id']}", headers=headers)
        assert resp.status_code == 204
        resp = await client.get(f"/api/v1/leave/requests/{second['id']}", headers=headers)
        assert resp.status_code == 404

    async def test_list_scopes(self, client, db, leave_types, employee, manager):
        await db.commit()
        await client.post("/api/v1/leave/requests", json=_leave_body(), headers=auth_headers_for(employee))

        resp = await client.get(
            "/api/v1/leave/requests", params={"scope": "team"}, headers=auth_headers_for(manager),
        )
        assert resp.status_code == 200
        assert resp.json()["meta"]["total"] == 1

        resp = await client.get(
            "/api/v1/leave/requests", params={"scope": "all"}, headers=auth_headers_for(employee),
        )
        assert resp.status_code == 403

    async def test_other_tenant_cannot_see_request(self, client, db, leave_types, employee):
        outsider = await add_employee(db, role=UserRole.hr, company_id=OTHER_COMPANY)
        await db.commit()
        created = (await client.post(
            "/api/v1/leave/requests", json=_leave_body(), headers=auth_headers_for(employee),
        )).json()

        resp = await client.get(f"/api/v1/leave/requests/{created['id']}", headers=auth_headers_for(outsider))
        assert resp.status_code == 404


# ═════════════════════════════════════════════════════════════════════
# Catalog & rules
# ═════════════════════════════════════════════════════════════════════


class TestCatalogAndRules:

    async def test_leave_types(self, client, db, leave_types, employee, hr_user):
        await db.commit()
        resp = await client.get("/api/v1/leave/types", headers=auth_headers_for(employee))
        assert [t["code"] for t in resp.json()] == ["casual", "earned", "sick"]

        body = {"code": "Compensatory", "name": "Comp Off", "default_quota": "2"}
        resp = await client.post("/api/v1/leave/types", json=body, headers=auth_headers_for(employee))
        assert resp.status_code == 403

        resp = await client.post("/api/v1/leave/types", json=body, headers=auth_headers_for(hr_user))
        assert resp.status_code == 201
        assert resp.json()["code"] == "compensatory"

        resp = await client.post("/api/v1/leave/types", json=body, headers=auth_headers_for(hr_user))
        assert resp.status_code == 409
        assert resp.json()["code"] == "duplicate"

    async def test_rules_override(self, client, db, employee, hr_user):
        await db.commit()
        resp = await client.get("/api/v1/leave/rules", headers=auth_headers_for(employee))
        assert resp.status_code == 403

        resp = await client.get("/api/v1/leave/rules", headers=auth_headers_for(hr_user))
        assert Decimal(resp.json()["carry_forward"]["earned"]["max_days"]) == Decimal("15")

        override = {"carry_forward": {"earned": {"enabled": True, "max_days": "10", "validity_months": 6}}}
        resp = await client.put("/api/v1/leave/rules", json=override, headers=auth_headers_for(hr_user))
        assert resp.status_code == 200

        resp = await client.get("/api/v1/leave/rules", headers=auth_headers_for(hr_user))
        earned = resp.json()["carry_forward"]["earned"]
        assert Decimal(earned["max_days"]) == Decimal("10")
        assert earned["validity_months"] == 6
        assert Decimal(resp.json()["carry_forward"]["casual"]["max_days"]) == Decimal("3")


# ═════════════════════════════════════════════════════════════════════
# Notifications, ledger, year-end
# ═════════════════════════════════════════════════════════════════════


class TestNotifications:

    async def test_read_flow(self, client, db, leave_types, employee, manager):
        await db.commit()
        await client.post("/api/v1/leave/requests", json=_leave_body(), headers=auth_headers_for(employee))
        await client.post(
            "/api/v1/leave/requests", json=_leave_body(offset=10), headers=auth_headers_for(employee),
        )
        headers = auth_headers_for(manager)

        resp = await client.get("/api/v1/notifications", headers=headers)
        body = resp.json()
        assert body["meta"]["total"] == 2
        assert body["meta"]["unread"] == 2
        first_id = body["data"][0]["id"]

        resp = await client.put(f"/api/v1/notifications/{first_id}/read", headers=headers)
        assert resp.status_code == 200
        resp = await client.get("/api/v1/notifications/unread-count", headers=headers)
        assert resp.json()["data"]["count"] == 1

        resp = await client.put("/api/v1/notifications/read-all", headers=headers)
        assert resp.json()["data"]["count"] == 1
        resp = await client.get("/api/v1/notifications", params={"is_read": False}, headers=headers)
        assert resp.json()["data"] == []

    async def test_cannot_read_someone_elses(self, client, db, leave_types, employee, manager):
        await db.commit()
        await client.post("/api/v1/leave/requests", json=_leave_body(), headers=auth_headers_for(employee))
        note_id = (await client.get("/api/v1/notifications", headers=auth_headers_for(manager))).json()["data"][0]["id"]

        resp = await client.put(f"/api/v1/notifications/{note_id}/read", headers=auth_headers_for(employee))
        assert resp.status_code == 403


class TestLedgerApi:

    async def test_adjust_and_export(self, client, db, leave_types, employee, hr_user, orphan):
        await db.commit()
        resp = await client.post(
            f"/api/v1/ledger/{employee.id}/adjustments",
            json={"leave_type": "sick", "amount": "2", "reason": "Comp for weekend work"},
            headers=auth_headers_for(hr_user),
        )
        assert resp.status_code == 201
        assert Decimal(resp.json()["balance_after"]) == Decimal("14")

        resp = await client.get(f"/api/v1/ledger/{employee.id}/export", headers=auth_headers_for(employee))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        lines = resp.text.strip().splitlines()
        assert lines[0].startswith("Date,Leave Type,Transaction Type")
        assert len(lines) == 3

        resp = await client.get(f"/api/v1/ledger/{employee.id}/export", headers=auth_headers_for(orphan))
        assert resp.status_code == 403

    async def test_adjustment_needs_capability(self, client, db, leave_types, employee, manager):
        await db.commit()
        resp = await client.post(
            f"/api/v1/ledger/{employee.id}/adjustments",
            json={"leave_type": "sick", "amount": "2", "reason": "Bonus"},
            headers=auth_headers_for(manager),
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "missing-capability"


class TestYearEndApi:

    async def test_batch_runs_need_capability(self, client, db, leave_types, employee):
        await db.commit()
        headers = auth_headers_for(employee)
        resp = await client.post("/api/v1/carry-forward/run", json={"from_year": 2025}, headers=headers)
        assert resp.status_code == 403
        resp = await client.post("/api/v1/encashment/run", json={"leave_type": "earned"}, headers=headers)
        assert resp.status_code == 403

    async def test_self_preview_and_calculation(self, client, db, leave_types, employee, orphan):
        await db.commit()
        headers = auth_headers_for(employee)

        resp = await client.get(
            f"/api/v1/carry-forward/{employee.id}/preview", params={"from_year": 2025}, headers=headers,
        )
        assert resp.status_code == 200
        assert {i["leave_type"] for i in resp.json()["items"]} == {"casual", "earned", "sick"}

        resp = await client.get(
            f"/api/v1/encashment/{employee.id}/calculate", params={"leave_type": "earned"}, headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json()["eligible"] is True

        resp = await client.get(
            f"/api/v1/carry-forward/{orphan.id}/preview", params={"from_year": 2025}, headers=headers,
        )
        assert resp.status_code == 403

    async def test_hr_encashes_for_employee(self, client, db, leave_types, employee, hr_user):
        await db.commit()
        resp = await client.post(
            f"/api/v1/encashment/{employee.id}",
            json={"leave_type": "EARNED", "days": "3"},
            headers=auth_headers_for(hr_user),
        )
        assert resp.status_code == 201
        assert Decimal(resp.json()["balance_after"]) == Decimal("12")

        resp = await client.post(
            f"/api/v1/encashment/{employee.id}",
            json={"leave_type": "casual", "days": "1"},
            headers=auth_headers_for(hr_user),
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "encashment-not-eligible"
