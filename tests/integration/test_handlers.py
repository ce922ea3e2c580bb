"""
End-to-end tests through the handler surface.

Bodies are canonical JSON text, so replays can be compared byte for byte.
"""

import json

import pytest

from quote_kernel.handlers import QuoteHandlers

from conftest import quote_payload


def _json(response):
    return json.loads(response.body)


class TestCreateAndRead:

    def test_create_returns_201(self, handlers, tenant):
        response = handlers.create_quote(tenant, quote_payload())
        assert response.status_code == 201
        body = _json(response)
        assert body["status"] == "draft"
        assert body["total_amount"] == "6900.00"
        assert body["tax_rate"] == "0.15"
        assert body["line_items"][0]["quantity"] == "40"

    def test_get_returns_same_quote(self, handlers, tenant):
        created = _json(handlers.create_quote(tenant, quote_payload()))
        response = handlers.get_quote(tenant, created["id"])
        assert response.status_code == 200
        assert _json(response)["quote_number"] == created["quote_number"]

    def test_validation_error_body(self, handlers, tenant):
        response = handlers.create_quote(tenant, quote_payload(title="ab"))
        assert response.status_code == 400
        body = _json(response)
        assert body["error"] == "VALIDATION_ERROR"
        assert body["details"]["field"] == "title"

    def test_not_found_body(self, handlers, tenant):
        response = handlers.get_quote(tenant, "does-not-exist")
        assert response.status_code == 404
        assert _json(response)["error"] == "QUOTE_NOT_FOUND"


class TestIdempotencyKeyHeader:

    def test_create_replay_is_byte_identical(self, handlers, tenant, service):
        first = handlers.create_quote(tenant, quote_payload(), idempotency_key="create-1")
        second = handlers.create_quote(tenant, quote_payload(), idempotency_key="create-1")
        assert first.status_code == second.status_code == 201
        assert second.body == first.body
        assert second.replayed
        assert not first.replayed
        third = handlers.create_quote(tenant, quote_payload())
        assert _json(third)["quote_number"] == "Q-2024-0002"

    def test_create_key_reuse_with_new_body_conflicts(self, handlers, tenant):
        handlers.create_quote(tenant, quote_payload(), idempotency_key="create-1")
        response = handlers.create_quote(tenant, quote_payload(title="Other job"), idempotency_key="create-1")
        assert response.status_code == 409
        assert _json(response)["error"] == "IDEMPOTENCY_KEY_CONFLICT"

    def test_failed_create_not_cached(self, handlers, tenant):
        bad = handlers.create_quote(tenant, quote_payload(currency="XXX"), idempotency_key="create-1")
        assert bad.status_code == 400
        assert _json(bad)["error"] == "INVALID_CURRENCY"
        retry = handlers.create_quote(tenant, quote_payload(currency="XXX"), idempotency_key="create-1")
        assert not retry.replayed

    def test_update_replay(self, handlers, tenant):
        quote_id = _json(handlers.create_quote(tenant, quote_payload()))["id"]
        first = handlers.update_quote(tenant, quote_id, {"notes": "n1"}, idempotency_key="upd-1")
        second = handlers.update_quote(tenant, quote_id, {"notes": "n1"}, idempotency_key="upd-1")
        assert first.status_code == 200
        assert second.replayed
        assert second.body == first.body
        assert len(_json(handlers.get_quote_versions(tenant, quote_id))["versions"]) == 1

    def test_update_key_on_other_quote_conflicts(self, handlers, tenant):
        a = _json(handlers.create_quote(tenant, quote_payload()))["id"]
        b = _json(handlers.create_quote(tenant, quote_payload()))["id"]
        handlers.update_quote(tenant, a, {"notes": "n1"}, idempotency_key="upd-1")
        response = handlers.update_quote(tenant, b, {"notes": "n1"}, idempotency_key="upd-1")
        assert response.status_code == 409

    def test_invalid_key_rejected(self, handlers, tenant):
        response = handlers.create_quote(tenant, quote_payload(), idempotency_key="")
        assert response.status_code == 400
        assert _json(response)["error"] == "INVALID_IDEMPOTENCY_KEY"


class TestStatusAndLocks:

    def test_lifecycle_via_handlers(self, handlers, tenant):
        quote_id = _json(handlers.create_quote(tenant, quote_payload()))["id"]
        for status in ("pending", "approved", "sent", "accepted"):
            response = handlers.transition_status(tenant, quote_id, {"status": status})
            assert response.status_code == 200, response.body
        assert _json(handlers.get_quote(tenant, quote_id))["status"] == "accepted"

    def test_invalid_transition_is_409(self, handlers, tenant):
        quote_id = _json(handlers.create_quote(tenant, quote_payload()))["id"]
        response = handlers.transition_status(tenant, quote_id, {"status": "sent"})
        assert response.status_code == 409
        body = _json(response)
        assert body["error"] == "INVALID_STATUS_TRANSITION"
        assert body["details"]["current_status"] == "draft"

    def test_missing_status_is_400(self, handlers, tenant):
        quote_id = _json(handlers.create_quote(tenant, quote_payload()))["id"]
        response = handlers.transition_status(tenant, quote_id, {})
        assert response.status_code == 400

    def test_locked_quote_is_403(self, handlers, tenant, force_editor):
        quote_id = _json(handlers.create_quote(tenant, quote_payload()))["id"]
        handlers.transition_status(tenant, quote_id, {"status": "pending"})
        handlers.transition_status(tenant, quote_id, {"status": "approved"})

        response = handlers.update_quote(tenant, quote_id, {"notes": "edit"})
        assert response.status_code == 403
        assert _json(response)["error"] == "QUOTE_LOCKED"

        forced = handlers.update_quote(force_editor, quote_id, {"notes": "edit"})
        assert forced.status_code == 200
        versions = _json(handlers.get_quote_versions(force_editor, quote_id))["versions"]
        version = handlers.get_quote_version(force_editor, quote_id, versions[0]["id"])
        assert _json(version)["reason"] == "force_edit"

    def test_delete(self, handlers, tenant):
        quote_id = _json(handlers.create_quote(tenant, quote_payload()))["id"]
        response = handlers.delete_quote(tenant, quote_id)
        assert _json(response) == {"id": quote_id, "deleted": True}
        assert handlers.get_quote(tenant, quote_id).status_code == 404


class TestErrorRendering:

    def test_unexpected_error_is_generic_500(self, service, idempotency, tenant, monkeypatch, captured_logs):
        def explode(*args, **kwargs):
            raise RuntimeError("connection string leaked")

        monkeypatch.setattr(service, "get_quote", explode)
        response = QuoteHandlers(service, idempotency).get_quote(tenant, "x")
        assert response.status_code == 500
        assert "leaked" not in response.body
        assert _json(response)["error"] == "INTERNAL_ERROR"
        assert any(r["message"] == "request_failed" for r in captured_logs())

    def test_debug_mode_includes_traceback(self, service, idempotency, tenant, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(service, "get_quote", explode)
        response = QuoteHandlers(service, idempotency, debug=True).get_quote(tenant, "x")
        body = _json(response)
        assert body["message"] == "boom"
        assert "RuntimeError" in body["traceback"]

    @pytest.mark.parametrize("body", [{"line_items": "nope"}, {"line_items": [], "x": 1}])
    def test_calculate_rejects_bad_body(self, handlers, body):
        assert handlers.calculate_quote(body).status_code == 400

    def test_calculate(self, handlers):
        response = handlers.calculate_quote({"line_items": quote_payload()["line_items"]})
        assert response.status_code == 200
        assert _json(response)["total_amount"] == "6900.00"
