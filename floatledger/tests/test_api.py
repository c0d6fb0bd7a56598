"""
HTTP surface: authentication, scoping, error bodies and the scheduler hook.
"""

from datetime import timedelta

import pytest
from jose import jwt

from floatledger.app.core.config import settings
from floatledger.app.core.tokens import issue_access_token, read_access_token
from floatledger.app.models.enums import UserRole, UserStatus
from floatledger.app.models.notification import Notification

API = f"/{settings.api_version}"


async def _post_cash(client, headers, supervisor_id, entry_type="START_OF_DAY", amount="1000"):
    return await client.post(
        f"{API}/ledger/entries",
        json={"supervisor_id": supervisor_id, "entry_type": entry_type, "amount": amount, "channel": "CASH"},
        headers=headers,
    )


async def test_health_and_root(client):
    health = await client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert health.json()["redis"] == "up"

    root = await client.get("/")
    assert root.json()["health"] == "/health"


async def test_responses_carry_a_correlation_id(client):
    response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})

    assert response.headers["X-Correlation-ID"] == "abc-123"
    assert "X-Process-Time" in response.headers


# --- Authentication ---

async def test_login(client, supervisor):
    response = await client.post(f"{API}/auth/login", json={"phone": supervisor.phone, "access_code": "1234"})

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user_id"] == supervisor.id
    assert body["role"] == "SUPERVISOR"

    me = await client.get(f"{API}/notifications", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200


@pytest.mark.parametrize("access_code", ["0000", "12345"])
async def test_login_with_wrong_code(client, supervisor, access_code):
    response = await client.post(f"{API}/auth/login", json={"phone": supervisor.phone, "access_code": access_code})

    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_UNAUTHORIZED"
    assert response.headers["WWW-Authenticate"] == "Bearer"


async def test_login_unknown_phone(client):
    response = await client.post(f"{API}/auth/login", json={"phone": "+221700000000", "access_code": "1234"})
    assert response.status_code == 401


async def test_inactive_user_is_refused(client, make_user, auth_headers):
    suspended = await make_user(UserRole.SUPERVISOR, "Suspended", status=UserStatus.SUSPENDED)

    login = await client.post(f"{API}/auth/login", json={"phone": suspended.phone, "access_code": "1234"})
    listing = await client.get(f"{API}/ledger/entries", headers=auth_headers(suspended))

    assert login.status_code == 403
    assert listing.status_code == 403


async def test_missing_or_bad_token(client):
    missing = await client.get(f"{API}/ledger/entries")
    forged = await client.get(f"{API}/ledger/entries", headers={"Authorization": "Bearer not-a-token"})

    assert missing.status_code == 401
    assert forged.status_code == 401
    assert forged.json()["message"] == "Could not validate credentials"


async def test_expired_or_incomplete_token(client, supervisor):
    expired = issue_access_token(supervisor, ttl=timedelta(seconds=-1))
    incomplete = jwt.encode({"sub": supervisor.phone}, settings.secret_key, algorithm=settings.algorithm)

    for token in (expired, incomplete):
        response = await client.get(f"{API}/ledger/entries", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


async def test_issued_token_claims(supervisor):
    claims = read_access_token(issue_access_token(supervisor))

    assert claims.user_id == supervisor.id
    assert claims.sub == supervisor.phone
    assert claims.role == UserRole.SUPERVISOR


# --- Ledger ---

async def test_post_entry(client, supervisor, auth_headers, notifier, dispatcher):
    response = await _post_cash(client, auth_headers(supervisor), supervisor.id, amount="250.50")
    await dispatcher.drain()

    assert response.status_code == 201
    body = response.json()
    assert body["entry_type"] == "START_OF_DAY"
    assert body["amount"]["minor"] == 25050
    assert body["channel"] == "CASH"
    assert body["receiver_name"] == "Awa Ndiaye"
    assert body["created_at"] == "2026-03-10T14:00:00"
    assert [request.user_id for request in notifier.sent] == [supervisor.id]


async def test_post_entry_error_bodies(client, supervisor, make_user, auth_headers):
    other = await make_user(UserRole.SUPERVISOR, "Binta")

    foreign = await _post_cash(client, auth_headers(supervisor), other.id)
    assert foreign.status_code == 403
    assert foreign.json()["error_code"] == "ERR_PERM_001"

    overdraft = await _post_cash(client, auth_headers(supervisor), supervisor.id, entry_type="WITHDRAWAL")
    assert overdraft.status_code == 422
    assert overdraft.json()["error_code"] == "ERR_VALIDATION_001"

    malformed = await _post_cash(client, auth_headers(supervisor), supervisor.id, amount="-5")
    assert malformed.status_code == 422
    assert malformed.json()["error_code"] == "ERR_VALIDATION"

    unknown = await _post_cash(client, auth_headers(supervisor), supervisor.id, amount="abc")
    assert unknown.status_code == 422


async def test_listing_is_scoped_for_supervisors(client, admin, supervisor, make_user, auth_headers):
    other = await make_user(UserRole.SUPERVISOR, "Binta")
    await _post_cash(client, auth_headers(admin), supervisor.id)
    await _post_cash(client, auth_headers(admin), other.id)

    mine = await client.get(f"{API}/ledger/entries", headers=auth_headers(supervisor))
    everything = await client.get(f"{API}/ledger/entries", params={"limit": 1}, headers=auth_headers(admin))

    assert mine.json()["total"] == 1
    assert mine.json()["items"][0]["receiver_id"] == supervisor.id
    assert everything.json()["total"] == 2
    assert everything.json()["pages"] == 2
    assert len(everything.json()["items"]) == 1


async def test_stats_endpoint(client, admin, supervisor, auth_headers):
    await _post_cash(client, auth_headers(admin), supervisor.id, entry_type="DEPOSIT", amount="100")
    await _post_cash(client, auth_headers(admin), supervisor.id, entry_type="WITHDRAWAL", amount="40")

    response = await client.get(f"{API}/ledger/stats", headers=auth_headers(supervisor))

    body = response.json()
    assert body["total_count"] == 2
    assert body["inflow"]["minor"] == 10000
    assert body["outflow"]["minor"] == 4000


async def test_entry_detail_rights(client, admin, supervisor, make_user, auth_headers):
    other = await make_user(UserRole.SUPERVISOR, "Binta")
    posted = await _post_cash(client, auth_headers(admin), supervisor.id, entry_type="DEPOSIT")
    entry_id = posted.json()["id"]

    own = await client.get(f"{API}/ledger/entries/{entry_id}", headers=auth_headers(supervisor))
    foreign = await client.get(f"{API}/ledger/entries/{entry_id}", headers=auth_headers(other))
    missing = await client.get(f"{API}/ledger/entries/9999", headers=auth_headers(admin))

    assert own.status_code == 200
    assert own.json()["permissions"]["can_modify"] is True
    assert own.json()["permissions"]["can_delete"] is True
    assert foreign.status_code == 403
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "ERR_NOT_FOUND_001"


async def test_audit_history_is_admin_only(client, clock, admin, supervisor, auth_headers):
    await _post_cash(client, auth_headers(supervisor), supervisor.id)
    clock.advance(seconds=90)
    reset = await client.post(
        f"{API}/accounts/{supervisor.id}/lines/start_of_day/reset",
        json={"key": "CASH", "new_value": "10"},
        headers=auth_headers(supervisor),
    )
    assert reset.status_code == 200

    denied = await client.get(f"{API}/ledger/audit", headers=auth_headers(supervisor))
    history = await client.get(f"{API}/ledger/audit", params={"receiver_id": supervisor.id},
                               headers=auth_headers(admin))

    assert denied.status_code == 403
    assert denied.json()["error_code"] == "ERR_FORBIDDEN"
    assert history.json()["total"] == 1
    assert history.json()["items"][0]["entry_type"] == "AUDIT_CORRECTION"


# --- Dashboards ---

async def test_global_dashboard_is_admin_only(client, admin, supervisor, auth_headers):
    await _post_cash(client, auth_headers(admin), supervisor.id)

    denied = await client.get(f"{API}/dashboard/global", headers=auth_headers(supervisor))
    dashboard = await client.get(f"{API}/dashboard/global", params={"period": "today"}, headers=auth_headers(admin))

    assert denied.status_code == 403
    assert dashboard.status_code == 200
    assert dashboard.json()["start_total"]["minor"] == 100000


async def test_supervisor_dashboard_scope(client, admin, supervisor, make_user, auth_headers):
    other = await make_user(UserRole.SUPERVISOR, "Binta")

    own = await client.get(f"{API}/dashboard/supervisors/{supervisor.id}", headers=auth_headers(supervisor))
    foreign = await client.get(f"{API}/dashboard/supervisors/{other.id}", headers=auth_headers(supervisor))
    custom = await client.get(
        f"{API}/dashboard/supervisors/{supervisor.id}",
        params={"period": "custom", "start": "2026-03-01T00:00:00", "end": "2026-03-02T00:00:00"},
        headers=auth_headers(supervisor),
    )
    by_admin = await client.get(f"{API}/dashboard/supervisors/{other.id}", headers=auth_headers(admin))

    assert own.status_code == 200
    assert foreign.status_code == 403
    assert custom.status_code == 403
    assert by_admin.status_code == 200


async def test_partner_dashboard_is_scoped_to_the_caller(client, admin, supervisor, make_user, auth_headers):
    amadou = await make_user(UserRole.PARTNER, "Amadou")
    fatou = await make_user(UserRole.PARTNER, "Fatou")
    for partner, amount in ((amadou, "120"), (fatou, "80")):
        await client.post(
            f"{API}/ledger/entries",
            json={"supervisor_id": supervisor.id, "entry_type": "DEPOSIT", "amount": amount,
                  "partner_id": partner.id},
            headers=auth_headers(admin),
        )

    own = await client.get(f"{API}/dashboard/partner", headers=auth_headers(amadou))
    by_supervisor = await client.get(f"{API}/dashboard/partner", headers=auth_headers(supervisor))
    custom = await client.get(f"{API}/dashboard/partner", params={"period": "custom"}, headers=auth_headers(amadou))

    assert own.status_code == 200
    body = own.json()
    assert body["partner_id"] == amadou.id
    assert body["total_deposits"]["minor"] == 12000
    assert [line["supervisor_id"] for line in body["supervisors"]] == [supervisor.id]
    assert by_supervisor.status_code == 403
    assert custom.status_code == 403


# --- Line operations ---

async def test_check_reset_and_delete(client, clock, supervisor, auth_headers):
    headers = auth_headers(supervisor)
    base = f"{API}/accounts/{supervisor.id}/lines/end_of_day"
    await _post_cash(client, headers, supervisor.id, entry_type="END_OF_DAY", amount="75")

    too_soon = await client.get(f"{base}/check", params={"key": "CASH"}, headers=headers)
    assert too_soon.json()["allowed"] is False

    clock.advance(seconds=90)
    ready = await client.get(f"{base}/check", params={"key": "CASH"}, headers=headers)
    assert ready.json()["allowed"] is True
    assert ready.json()["ownership"] == "organic"

    reset = await client.post(f"{base}/reset", json={"key": "CASH", "new_value": "60"}, headers=headers)
    assert reset.status_code == 200
    assert reset.json()["old_value"]["minor"] == 7500
    assert reset.json()["new_value"]["minor"] == 6000

    clock.advance(seconds=90)
    deleted = await client.post(f"{base}/delete", json={"key": "CASH"}, headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["new_value"]["minor"] == 0


async def test_reset_window_denial_is_a_permission_error(client, supervisor, auth_headers):
    headers = auth_headers(supervisor)
    await _post_cash(client, headers, supervisor.id)

    response = await client.post(
        f"{API}/accounts/{supervisor.id}/lines/start_of_day/reset",
        json={"key": "CASH", "new_value": "1"},
        headers=headers,
    )

    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_PERM_001"
    assert "too recent" in response.json()["message"]


async def test_unknown_line_kind_is_rejected(client, admin, supervisor, auth_headers):
    response = await client.get(
        f"{API}/accounts/{supervisor.id}/lines/middle_of_day/check",
        params={"key": "CASH"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 422


async def test_reconciliation_endpoint(client, admin, supervisor, make_user, auth_headers):
    other = await make_user(UserRole.SUPERVISOR, "Binta")
    await _post_cash(client, auth_headers(admin), supervisor.id, entry_type="END_OF_DAY", amount="50")

    own = await client.get(f"{API}/accounts/{supervisor.id}/reconciliation", headers=auth_headers(supervisor))
    foreign = await client.get(f"{API}/accounts/{other.id}/reconciliation", headers=auth_headers(supervisor))

    assert own.status_code == 200
    assert own.json()["balanced"] is True
    assert foreign.status_code == 403


# --- Rollover ---

async def test_rollover_requires_configured_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", None)

    response = await client.post(f"{API}/rollover/run", headers={"Authorization": "Bearer anything"})

    assert response.status_code == 500
    assert response.json()["error_code"] == "ERR_CONFIG_001"


async def test_rollover_run_via_scheduler(client, admin, supervisor, auth_headers, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", "s3cret")
    await _post_cash(client, auth_headers(admin), supervisor.id, entry_type="END_OF_DAY", amount="20")

    wrong = await client.post(f"{API}/rollover/run", headers={"Authorization": "Bearer nope"})
    first = await client.post(f"{API}/rollover/run", headers={"Authorization": "Bearer s3cret"})
    second = await client.post(f"{API}/rollover/run", headers={"Authorization": "Bearer s3cret"})
    status = await client.get(f"{API}/rollover/status", headers=auth_headers(admin))
    denied = await client.get(f"{API}/rollover/status", headers=auth_headers(supervisor))

    assert wrong.status_code == 401
    assert first.json()["executed"] is True
    assert first.json()["accounts_rolled"] == 1
    assert second.json()["executed"] is False
    assert status.json()["executed_today"] is True
    assert denied.status_code == 403


# --- Users and notifications ---

async def test_user_administration(client, admin, supervisor, auth_headers):
    payload = {"display_name": "Ibrahima Fall", "phone": "+221779998877", "access_code": "4321", "role": "PARTNER"}

    denied = await client.post(f"{API}/users", json=payload, headers=auth_headers(supervisor))
    created = await client.post(f"{API}/users", json=payload, headers=auth_headers(admin))
    duplicate = await client.post(f"{API}/users", json=payload, headers=auth_headers(admin))

    assert denied.status_code == 403
    assert created.status_code == 201
    assert "access_code" not in created.json()
    assert duplicate.status_code == 409
    assert duplicate.json()["error_code"] == "ERR_CONFLICT_001"

    removed = await client.delete(f"{API}/users/{created.json()['id']}", headers=auth_headers(admin))
    self_removal = await client.delete(f"{API}/users/{admin.id}", headers=auth_headers(admin))

    assert removed.json() == {"status": "success", "user_id": created.json()["id"]}
    assert self_removal.status_code == 403


async def test_notification_inbox(client, db_session, supervisor, auth_headers):
    notification = Notification(user_id=supervisor.id, title="Welcome", message="Hello")
    db_session.add(notification)
    await db_session.commit()
    headers = auth_headers(supervisor)

    listing = await client.get(f"{API}/notifications", headers=headers)
    marked = await client.patch(f"{API}/notifications/{notification.id}/read", headers=headers)
    missing = await client.patch(f"{API}/notifications/9999/read", headers=headers)
    unread = await client.get(f"{API}/notifications", params={"unread_only": True}, headers=headers)

    assert [row["title"] for row in listing.json()] == ["Welcome"]
    assert marked.json() == {"status": "success"}
    assert missing.status_code == 404
    assert unread.json() == []
