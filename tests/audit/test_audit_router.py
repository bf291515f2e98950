"""
Tests for audit API endpoints.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from chapel.admin.audit.models import AuditFilterParams
from chapel.admin.audit.store import AuditLogStore
from chapel.admin.db import utc_now

BASE = "/api/v1/audit"


async def _self_audit_actions(session, actor_id: str) -> list[str]:
    rows, _ = await AuditLogStore(session).find(
        AuditFilterParams(actor_id=actor_id, action_category="security")
    )
    return [row.action for row in rows]


class TestAuthorization:
    async def test_requires_authentication(self, client):
        response = await client.get(f"{BASE}/logs")
        assert response.status_code == 401

    async def test_invalid_token(self, client):
        response = await client.get(
            f"{BASE}/logs", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401

    async def test_non_admin_role_forbidden(self, client, make_auth_headers):
        response = await client.get(
            f"{BASE}/logs", headers=make_auth_headers("member-1", ["member"])
        )
        assert response.status_code == 403

    async def test_moderator_can_read_but_not_flag(self, client, moderator_headers, make_log):
        row = await make_log("delete_user")

        assert (await client.get(f"{BASE}/logs", headers=moderator_headers)).status_code == 200
        response = await client.post(
            f"{BASE}/logs/{row.id}/flag", json={"reason": "check"}, headers=moderator_headers
        )
        assert response.status_code == 403

    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/export"),
            ("get", "/compliance/report"),
            ("post", "/cleanup"),
        ],
    )
    async def test_super_admin_only_endpoints(self, client, admin_headers, method, path):
        response = await getattr(client, method)(f"{BASE}{path}", headers=admin_headers)
        assert response.status_code == 403


class TestListLogs:
    async def test_list_with_summary(self, client, auth_headers, make_log):
        await make_log("hard_delete_user")
        await make_log("delete_user", flagged=True)
        await make_log("foo_bar")

        response = await client.get(f"{BASE}/logs", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert len(body["data"]["logs"]) == 3
        assert body["data"]["pagination"]["total"] == 3
        assert body["data"]["summary"]["critical_events"] == 1
        assert body["data"]["summary"]["flagged_events"] == 1

    async def test_filters_and_pagination(self, client, auth_headers, make_log, now):
        for hours in range(5):
            await make_log("delete_user", timestamp=now - timedelta(hours=hours))
        await make_log("foo_bar")

        response = await client.get(
            f"{BASE}/logs",
            params={"action": "DELETE", "page": 2, "per_page": 2, "risk_level": ["high"]},
            headers=auth_headers,
        )

        data = response.json()["data"]
        assert data["pagination"] == {
            "page": 2,
            "per_page": 2,
            "total": 5,
            "pages": 3,
            "has_next": True,
            "has_prev": True,
        }
        assert [log["action"] for log in data["logs"]] == ["delete_user", "delete_user"]

    async def test_invalid_date_range(self, client, auth_headers, now):
        response = await client.get(
            f"{BASE}/logs",
            params={
                "start_date": now.isoformat(),
                "end_date": (now - timedelta(days=1)).isoformat(),
            },
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "AUDIT_VALIDATION_ERROR"

    async def test_access_is_self_audited(self, client, auth_headers, async_db_session):
        await client.get(f"{BASE}/logs", headers=auth_headers)

        assert await _self_audit_actions(async_db_session, "super-1") == ["view_audit_logs"]

    async def test_request_id_echoed(self, client, auth_headers):
        response = await client.get(
            f"{BASE}/logs", headers={**auth_headers, "X-Request-ID": "req-42"}
        )
        assert response.headers["X-Request-ID"] == "req-42"


class TestSingleLog:
    async def test_get_log(self, client, auth_headers, make_log):
        row = await make_log("delete_user")

        response = await client.get(f"{BASE}/logs/{row.id}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["log"]["id"] == str(row.id)

    async def test_not_found(self, client, auth_headers):
        response = await client.get(f"{BASE}/logs/{uuid4()}", headers=auth_headers)

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "AUDIT_LOG_NOT_FOUND"


class TestHistories:
    async def test_actor_history(self, client, auth_headers, make_log):
        await make_log("delete_user")

        response = await client.get(f"{BASE}/actor/admin-1", headers=auth_headers)

        data = response.json()["data"]
        assert data["total"] == 1
        assert data["actor"] is None

    async def test_target_history(self, client, auth_headers, make_log):
        await make_log("update_user_status", target={"type": "user", "id": "member-1"})

        response = await client.get(f"{BASE}/target/user/member-1", headers=auth_headers)

        data = response.json()["data"]
        assert data["total"] == 1
        assert data["target"] == {"id": "member-1", "type": "user"}

    async def test_security_events(self, client, auth_headers, make_log):
        await make_log("hard_delete_user")
        await make_log("foo_bar")

        response = await client.get(f"{BASE}/security-events", headers=auth_headers)

        data = response.json()["data"]
        assert [log["action"] for log in data["logs"]] == ["hard_delete_user"]
        assert data["summary"]["total_security_events"] == 1


class TestReviewEndpoints:
    async def test_flag_requires_reason(self, client, admin_headers, make_log):
        row = await make_log("delete_user")

        for body in ({}, {"reason": "   "}):
            response = await client.post(
                f"{BASE}/logs/{row.id}/flag", json=body, headers=admin_headers
            )
            assert response.status_code == 400
            assert response.json()["context"]["field"] == "reason"

        response = await client.post(f"{BASE}/logs/{row.id}/flag", headers=admin_headers)
        assert response.status_code == 400

    async def test_flag_and_review(self, client, admin_headers, make_log):
        row = await make_log("delete_user")

        flagged = await client.post(
            f"{BASE}/logs/{row.id}/flag", json={"reason": "Unexpected"}, headers=admin_headers
        )
        assert flagged.status_code == 200
        assert flagged.json()["message"] == "Audit log flagged successfully"
        log = flagged.json()["data"]["log"]
        assert log["flagged"] is True
        assert log["flag_reason"] == "Unexpected"
        assert log["reviewed_by"] == "admin-1"

        reviewed = await client.post(
            f"{BASE}/logs/{row.id}/review", json={"notes": "Confirmed"}, headers=admin_headers
        )
        assert reviewed.status_code == 200
        assert reviewed.json()["data"]["log"]["reviewed"] is True
        assert reviewed.json()["data"]["log"]["review_notes"] == "Confirmed"

    async def test_flag_unknown_log(self, client, admin_headers):
        response = await client.post(
            f"{BASE}/logs/{uuid4()}/flag", json={"reason": "x"}, headers=admin_headers
        )
        assert response.status_code == 404

    async def test_sensitive_operations_are_rate_limited(self, client, admin_headers, make_log):
        row = await make_log("delete_user")
        url = f"{BASE}/logs/{row.id}/review"

        for _ in range(5):
            assert (await client.post(url, json={}, headers=admin_headers)).status_code == 200

        response = await client.post(url, json={}, headers=admin_headers)
        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) >= 1


class TestReporting:
    async def test_stats(self, client, auth_headers, make_log):
        await make_log("delete_user")

        response = await client.get(
            f"{BASE}/stats", params={"group_by": "month"}, headers=auth_headers
        )

        data = response.json()["data"]
        assert data["granularity"] == "month"
        assert data["summary"]["total_logs"] == 1

    async def test_export_json(self, client, auth_headers, make_log):
        for action in ("delete_user", "foo_bar"):
            await make_log(action)

        response = await client.get(f"{BASE}/export", headers=auth_headers)

        data = response.json()["data"]
        assert data["total_records"] == 2
        assert data["exported_by"] == "super-1@chapel.org"

    async def test_export_csv(self, client, auth_headers, make_log):
        for action in ("delete_user", "foo_bar", "verify_user"):
            await make_log(action)

        response = await client.get(
            f"{BASE}/export",
            params={"format": "csv", "include_details": "false"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        assert len(response.text.split("\n")) == 4

    async def test_export_records_record_count_for_multiline_cells(
        self, client, auth_headers, make_log, async_db_session
    ):
        await make_log("delete_user", description="line one\nline two")

        response = await client.get(
            f"{BASE}/export", params={"format": "csv"}, headers=auth_headers
        )

        assert response.status_code == 200
        assert '"line one\nline two"' in response.text
        rows, _ = await AuditLogStore(async_db_session).find(
            AuditFilterParams(action="export_audit_logs")
        )
        assert [row.action_data["exported_count"] for row in rows] == [1]

    async def test_compliance_report(self, client, auth_headers, make_log):
        for _ in range(3):
            await make_log("hard_delete_user")
        await make_log("foo_bar", flagged=True)

        response = await client.get(
            f"{BASE}/compliance/report",
            params={"compliance_type": "gdpr"},
            headers=auth_headers,
        )

        report = response.json()["data"]["compliance_report"]
        assert report["report_type"] == "gdpr"
        assert report["summary"]["compliance_score"] == 83

    async def test_recent_alerts(self, client, auth_headers, make_log):
        await make_log("hard_delete_user", timestamp=utc_now())

        response = await client.get(
            f"{BASE}/alerts/recent", params={"hours": 1}, headers=auth_headers
        )

        data = response.json()["data"]
        assert data["summary"]["critical_alerts"] == 1
        assert data["timeframe"] == "Last 1 hours"


class TestCleanupEndpoint:
    async def test_cleanup_deletes(self, client, auth_headers, make_log):
        await make_log("foo_bar", timestamp=utc_now() - timedelta(days=400))
        await make_log("hard_delete_user", timestamp=utc_now() - timedelta(days=400))

        response = await client.post(
            f"{BASE}/cleanup",
            json={"older_than_days": 365, "action": "delete", "preserve_critical": True},
            headers=auth_headers,
        )

        body = response.json()
        assert response.status_code == 200
        assert body["data"]["cleaned_up_count"] == 1
        assert body["message"] == "Successfully deleted 1 audit logs"

    async def test_cleanup_invalid_action(self, client, auth_headers):
        response = await client.post(
            f"{BASE}/cleanup", json={"action": "shred"}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["message"] == (
            'Invalid cleanup action. Must be "archive" or "delete"'
        )
