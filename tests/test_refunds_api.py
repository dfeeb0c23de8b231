"""Refund endpoints - auth, error mapping, enqueue and idempotent replay.

Domain calls are patched at the route module; authentication runs the real
JWT path against a test JWKS.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from cityventure.api.factory import create_app
from cityventure.domain.refund_eligibility import RefundEligibility
from cityventure.domain.refunds import (
    ActiveRefundExistsError,
    NotResourceOwnerError,
    RefundNotEligibleError,
    RefundStateError,
    ResourceNotFoundError,
)
from helpers import _auth_headers, _bind_txn, _user

MODULE = "cityventure.api.routes.refunds"
USER_ID = "11111111-1111-1111-1111-111111111111"
REFUND_ID = "aaaaaaaa-0000-0000-0000-000000000001"
ORDER_ID = "bbbbbbbb-0000-0000-0000-000000000001"
BUSINESS_ID = "cccccccc-0000-0000-0000-000000000001"


def _refund(**overrides) -> dict:
    refund = {
        "id": REFUND_ID,
        "refund_for": "order",
        "refund_for_id": ORDER_ID,
        "payment_id": "pay-1",
        "requested_by": USER_ID,
        "amount_cents": 25000,
        "original_amount_cents": 25000,
        "currency": "PHP",
        "reason": "requested_by_customer",
        "notes": None,
        "status": "pending",
        "external_refund_id": None,
        "error_message": None,
        "retry_count": 0,
        "submission_generation": 0,
        "cancelled_by": None,
        "requested_at": datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc),
        "processed_at": None,
        "completed_at": None,
    }
    refund.update(overrides)
    return refund


@pytest.fixture
def api(oidc_env, mock_jwks_fetch, rsa_keypair):
    private_key, _ = rsa_keypair
    tasks = MagicMock()
    tasks.enqueue_http.return_value = True
    with patch(
        "cityventure.api.auth._get_user_from_db", return_value=_user(USER_ID)
    ), patch(f"{MODULE}.txn") as mock_txn, patch(
        f"{MODULE}._get_tasks_client", return_value=tasks
    ):
        cur = _bind_txn(mock_txn)
        client = TestClient(create_app(role="public"))
        yield client, _auth_headers(private_key), cur, tasks


class TestAuth:
    def test_missing_token(self, api):
        client, _, _, _ = api
        assert client.get("/refunds/mine").status_code == 401

    def test_unknown_user(self, api):
        client, headers, _, _ = api
        with patch("cityventure.api.auth._get_user_from_db", return_value=None):
            assert client.get("/refunds/mine", headers=headers).status_code == 403


class TestEligibility:
    def test_eligible(self, api):
        client, headers, cur, _ = api
        eligibility = RefundEligibility(
            eligible=True,
            reason="Eligible for refund",
            resource_kind="order",
            resource_id=ORDER_ID,
            payment_id="pay-1",
            external_payment_id="pi_123",
            amount_cents=25000,
        )

        with patch(f"{MODULE}.evaluate", return_value=eligibility) as evaluate:
            response = client.get(
                "/refunds/eligibility",
                params={"resource_kind": "order", "resource_id": ORDER_ID},
                headers=headers,
            )

        assert response.status_code == 200
        body = response.json()
        assert body["eligible"] is True
        assert body["amount"] == "250.00"
        evaluate.assert_called_once_with(cur, "order", ORDER_ID, USER_ID)

    def test_invalid_kind(self, api):
        client, headers, _, _ = api
        response = client.get(
            "/refunds/eligibility",
            params={"resource_kind": "ticket", "resource_id": ORDER_ID},
            headers=headers,
        )
        assert response.status_code == 422


class TestCreateRefund:
    def test_creates_and_enqueues_submission(self, api):
        client, headers, _, tasks = api

        with patch(f"{MODULE}.request_refund", return_value=_refund()) as request_refund:
            response = client.post(
                "/refunds",
                json={"resource_kind": "order", "resource_id": ORDER_ID, "amount": "250.00"},
                headers={**headers, "X-Correlation-ID": "corr-1"},
            )

        assert response.status_code == 201
        body = response.json()
        assert body["submission_enqueued"] is True
        assert body["refund"]["id"] == REFUND_ID
        assert body["refund"]["amount"] == "250.00"
        assert body["refund"]["requested_at"] == "2026-03-01T09:30:00+00:00"

        kwargs = request_refund.call_args.kwargs
        assert kwargs["requester_id"] == USER_ID
        assert kwargs["amount_cents"] == 25000
        assert kwargs["reason"] == "requested_by_customer"

        enqueue = tasks.enqueue_http.call_args.kwargs
        assert enqueue["task_id"] == f"refund-submit:{REFUND_ID}"
        assert enqueue["url_path"] == "/tasks/refunds/submit"
        assert enqueue["payload"] == {"refund_id": REFUND_ID, "correlation_id": "corr-1"}

    def test_enqueue_failure_keeps_refund(self, api):
        client, headers, _, tasks = api
        tasks.enqueue_http.side_effect = RuntimeError("queue down")

        with patch(f"{MODULE}.request_refund", return_value=_refund()):
            response = client.post(
                "/refunds",
                json={"resource_kind": "order", "resource_id": ORDER_ID},
                headers=headers,
            )

        assert response.status_code == 201
        assert response.json()["submission_enqueued"] is False

    def test_sub_cent_amount_rejected(self, api):
        client, headers, _, _ = api

        with patch(f"{MODULE}.request_refund") as request_refund:
            response = client.post(
                "/refunds",
                json={"resource_kind": "order", "resource_id": ORDER_ID, "amount": "10.005"},
                headers=headers,
            )

        assert response.status_code == 400
        request_refund.assert_not_called()

    @pytest.mark.parametrize(
        ("exc", "status_code"),
        [
            (ActiveRefundExistsError("A refund is already in progress"), 409),
            (ResourceNotFoundError("Order not found"), 404),
            (NotResourceOwnerError("You do not own this order"), 403),
            (
                RefundNotEligibleError(
                    RefundEligibility(
                        eligible=False,
                        reason="Cash orders cannot be refunded",
                        resource_kind="order",
                        resource_id=ORDER_ID,
                        denial="cash_payment",
                    )
                ),
                409,
            ),
        ],
    )
    def test_domain_errors_mapped(self, api, exc, status_code):
        client, headers, _, tasks = api

        with patch(f"{MODULE}.request_refund", side_effect=exc):
            response = client.post(
                "/refunds",
                json={"resource_kind": "order", "resource_id": ORDER_ID},
                headers=headers,
            )

        assert response.status_code == status_code
        tasks.enqueue_http.assert_not_called()

    def test_idempotent_replay(self, api):
        client, headers, _, tasks = api
        stored = {"refund": {"id": REFUND_ID}, "submission_enqueued": True}

        with patch(f"{MODULE}.idem_repo") as idem, patch(f"{MODULE}.request_refund") as request_refund:
            idem.get_stored_response.return_value = (201, stored)
            response = client.post(
                "/refunds",
                json={"resource_kind": "order", "resource_id": ORDER_ID},
                headers={**headers, "Idempotency-Key": "idem-1"},
            )

        assert response.status_code == 201
        assert response.json() == stored
        request_refund.assert_not_called()
        tasks.enqueue_http.assert_not_called()

    def test_first_response_is_stored(self, api):
        client, headers, cur, _ = api

        with patch(f"{MODULE}.idem_repo") as idem, patch(
            f"{MODULE}.request_refund", return_value=_refund()
        ):
            idem.get_stored_response.return_value = None
            client.post(
                "/refunds",
                json={"resource_kind": "order", "resource_id": ORDER_ID},
                headers={**headers, "Idempotency-Key": "idem-1"},
            )

        kwargs = idem.store_response.call_args.kwargs
        assert kwargs["idempotency_key"] == "idem-1"
        assert kwargs["endpoint"] == f"refund-request:{USER_ID}"
        assert kwargs["response_code"] == 201


class TestReadRefunds:
    def test_mine(self, api):
        client, headers, cur, _ = api

        with patch(f"{MODULE}.refunds_repo") as repo:
            repo.list_refunds_for_user.return_value = [_refund()]
            response = client.get("/refunds/mine", headers=headers)

        assert response.status_code == 200
        assert [r["id"] for r in response.json()] == [REFUND_ID]
        repo.list_refunds_for_user.assert_called_once_with(cur, USER_ID, limit=50, offset=0)

    def test_get_own_refund(self, api):
        client, headers, _, _ = api

        with patch(f"{MODULE}.refunds_repo") as repo:
            repo.get_refund.return_value = _refund()
            response = client.get(f"/refunds/{REFUND_ID}", headers=headers)

        assert response.status_code == 200
        assert response.json()["status"] == "pending"

    def test_other_users_refund_is_hidden(self, api):
        client, headers, _, _ = api

        with patch(f"{MODULE}.refunds_repo") as repo, patch(
            f"{MODULE}.get_resource_for_refund_check",
            return_value={"owner_id": "someone-else", "business_id": BUSINESS_ID},
        ), patch(f"{MODULE}.has_business_role", return_value=False):
            repo.get_refund.return_value = _refund(requested_by="someone-else")
            response = client.get(f"/refunds/{REFUND_ID}", headers=headers)

        assert response.status_code == 404

    def test_business_viewer_can_read(self, api):
        client, headers, _, _ = api

        with patch(f"{MODULE}.refunds_repo") as repo, patch(
            f"{MODULE}.get_resource_for_refund_check",
            return_value={"owner_id": "someone-else", "business_id": BUSINESS_ID},
        ), patch(f"{MODULE}.has_business_role", return_value=True) as has_role:
            repo.list_refunds_for_resource.return_value = [_refund(requested_by="someone-else")]
            response = client.get(
                "/refunds/by-resource",
                params={"resource_kind": "order", "resource_id": ORDER_ID},
                headers=headers,
            )

        assert response.status_code == 200
        has_role.assert_called_once_with(USER_ID, BUSINESS_ID, "viewer")


class TestCancelRefund:
    def test_cancelled(self, api):
        client, headers, _, _ = api

        with patch(
            f"{MODULE}.cancel_refund",
            return_value={"status": "cancelled", "refund_id": REFUND_ID},
        ) as cancel:
            response = client.post(f"/refunds/{REFUND_ID}/actions/cancel", headers=headers)

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        cancel.assert_called_once_with(REFUND_ID, by_user_id=USER_ID)

    def test_processing_refund_conflicts(self, api):
        client, headers, _, _ = api

        with patch(
            f"{MODULE}.cancel_refund",
            side_effect=RefundStateError("already submitted", refund_id=REFUND_ID, status="processing"),
        ):
            response = client.post(f"/refunds/{REFUND_ID}/actions/cancel", headers=headers)

        assert response.status_code == 409


class TestRetryRefund:
    def _patch_lookup(self, refund: dict, role_ok: bool = True, other_active: bool = False):
        repo = patch(f"{MODULE}.refunds_repo", **{"has_active_refund.return_value": other_active})
        resource = patch(
            f"{MODULE}.get_resource_for_refund_check",
            return_value={"owner_id": "someone-else", "business_id": BUSINESS_ID},
        )
        role = patch(f"{MODULE}.has_business_role", return_value=role_ok)
        return repo, resource, role, refund

    def test_failed_refund_resubmitted(self, api):
        client, headers, _, tasks = api
        repo_p, resource_p, role_p, refund = self._patch_lookup(
            _refund(status="failed", retry_count=2, submission_generation=1)
        )

        with repo_p as repo, resource_p, role_p as has_role:
            repo.get_refund.return_value = refund
            response = client.post(f"/refunds/{REFUND_ID}/actions/retry", headers=headers)

        assert response.status_code == 202
        has_role.assert_called_once_with(USER_ID, BUSINESS_ID, "staff")
        assert tasks.enqueue_http.call_args.kwargs["task_id"] == f"refund-submit:{REFUND_ID}:2-1"

    def test_requires_staff(self, api):
        client, headers, _, tasks = api
        repo_p, resource_p, role_p, refund = self._patch_lookup(
            _refund(status="failed"), role_ok=False
        )

        with repo_p as repo, resource_p, role_p:
            repo.get_refund.return_value = refund
            response = client.post(f"/refunds/{REFUND_ID}/actions/retry", headers=headers)

        assert response.status_code == 403
        tasks.enqueue_http.assert_not_called()

    def test_only_failed_refunds(self, api):
        client, headers, _, tasks = api
        repo_p, resource_p, role_p, refund = self._patch_lookup(_refund(status="succeeded"))

        with repo_p as repo, resource_p, role_p:
            repo.get_refund.return_value = refund
            response = client.post(f"/refunds/{REFUND_ID}/actions/retry", headers=headers)

        assert response.status_code == 409
        tasks.enqueue_http.assert_not_called()

    def test_enqueue_failure_is_503(self, api):
        client, headers, _, tasks = api
        tasks.enqueue_http.return_value = False
        repo_p, resource_p, role_p, refund = self._patch_lookup(_refund(status="failed"))

        with repo_p as repo, resource_p, role_p:
            repo.get_refund.return_value = refund
            response = client.post(f"/refunds/{REFUND_ID}/actions/retry", headers=headers)

        assert response.status_code == 503

    def test_newer_active_refund_blocks_retry(self, api):
        client, headers, cur, tasks = api
        repo_p, resource_p, role_p, refund = self._patch_lookup(
            _refund(status="failed", retry_count=1), other_active=True
        )

        with repo_p as repo, resource_p, role_p:
            repo.get_refund.return_value = refund
            response = client.post(f"/refunds/{REFUND_ID}/actions/retry", headers=headers)

        assert response.status_code == 409
        assert "Another refund" in response.json()["detail"]
        repo.has_active_refund.assert_called_once_with(cur, "order", ORDER_ID)
        tasks.enqueue_http.assert_not_called()
