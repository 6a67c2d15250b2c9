from decimal import Decimal

from conftest import PASSWORD, PIN, auth_headers, make_user, provider_success
from errors import ConfigurationError, ProviderRejected
from models import CustomerVerification, TransactionType

AIRTIME_BODY = {"network_code": 1, "amount": "1000", "phone_number": "08031234567", "pin": PIN}


class TestAuth:

    def test_register_login_and_profile(self, client):
        response = client.post("/auth/register/", json={
            "name": "Chioma Eze",
            "email": "chioma@example.com",
            "password": "s3cret-pass",
            "phone": "08123456789",
        })
        assert response.status_code == 201

        response = client.post("/auth/login/", data={"username": "chioma@example.com", "password": "s3cret-pass"})
        assert response.status_code == 200
        token = response.json()["access_token"]

        response = client.get("/auth/users/me/", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        profile = response.json()
        assert profile["email"] == "chioma@example.com"
        assert profile["has_pin"] is False
        assert "pin_hash" not in profile

    def test_duplicate_email(self, client, user):
        response = client.post("/auth/register/", json={
            "name": "Ada", "email": user.email, "password": "another-pass", "phone": "08031234567",
        })
        assert response.status_code == 400

    def test_wrong_password(self, client, user):
        response = client.post("/auth/login/", data={"username": user.email, "password": "wrong"})
        assert response.status_code == 400

    def test_missing_token(self, client):
        response = client.get("/banking/balance/")
        assert response.status_code == 401
        assert response.json()["code"] == "unauthenticated"
        assert response.headers["www-authenticate"] == "Bearer"

    def test_garbage_token(self, client):
        response = client.get("/banking/balance/", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


class TestBanking:

    def test_balance(self, client, user):
        response = client.get("/banking/balance/", headers=auth_headers(user))
        assert response.json() == {"balance": "5000.00"}

    def test_buy_airtime(self, client, user_with_pin, providers):
        response = client.post("/banking/airtime/", json=AIRTIME_BODY, headers=auth_headers(user_with_pin))

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Transaction successful"
        assert body["new_balance"] == "4000.00"
        assert body["transaction"]["status"] == "success"
        assert body["transaction"]["provider_reference"] == "VTU-1001"
        request = providers.buy_airtime.call_args.args[0]
        assert request.phone_number == "08031234567"

    def test_purchase_history(self, client, user_with_pin):
        bought = client.post("/banking/airtime/", json=AIRTIME_BODY, headers=auth_headers(user_with_pin)).json()
        reference = bought["transaction"]["reference"]

        history = client.get("/banking/transactions/", headers=auth_headers(user_with_pin)).json()
        assert [t["reference"] for t in history["transactions"]] == [reference]

        detail = client.get(f"/banking/transactions/{reference}", headers=auth_headers(user_with_pin))
        assert detail.status_code == 200
        assert detail.json()["details"]["debited"] is True

    def test_other_users_transaction_is_hidden(self, client, services, user_with_pin):
        bought = client.post("/banking/airtime/", json=AIRTIME_BODY, headers=auth_headers(user_with_pin)).json()
        stranger = make_user(services, email="stranger@example.com")

        response = client.get(f"/banking/transactions/{bought['transaction']['reference']}",
                              headers=auth_headers(stranger))
        assert response.status_code == 404

    def test_wrong_pin(self, client, services, user_with_pin, providers):
        response = client.post("/banking/airtime/", json={**AIRTIME_BODY, "pin": "0000"},
                               headers=auth_headers(user_with_pin))

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_pin"
        providers.buy_airtime.assert_not_called()
        assert services.ledger.get_balance(user_with_pin.id) == 5000

    def test_pin_not_set(self, client, user, providers):
        response = client.post("/banking/airtime/", json=AIRTIME_BODY, headers=auth_headers(user))

        assert response.status_code == 400
        assert response.json()["code"] == "pin_not_set"
        providers.buy_airtime.assert_not_called()

    def test_lockout(self, client, user_with_pin):
        headers = auth_headers(user_with_pin)
        for _ in range(5):
            response = client.post("/banking/airtime/", json={**AIRTIME_BODY, "pin": "0000"}, headers=headers)
            assert response.status_code == 400

        response = client.post("/banking/airtime/", json=AIRTIME_BODY, headers=headers)
        assert response.status_code == 423
        assert response.json()["code"] == "account_locked"
        assert response.json()["locked_until"]

    def test_provider_rejected(self, client, services, user_with_pin, providers):
        providers.buy_airtime.side_effect = ProviderRejected("Provider rejected the request",
                                                             vendor_message="Vendor wallet empty")
        response = client.post("/banking/airtime/", json=AIRTIME_BODY, headers=auth_headers(user_with_pin))

        assert response.status_code == 400
        body = response.json()
        assert body["detail"] == "Transaction failed. Please try again."
        assert body["code"] == "provider_rejected"
        assert body["transaction"]["status"] == "failed"
        assert "Vendor wallet empty" not in response.text
        assert services.transactions.get_by_reference(body["reference"]) is not None
        assert services.ledger.get_balance(user_with_pin.id) == 5000

    def test_configuration_error_is_generic(self, client, user_with_pin, providers):
        providers.buy_airtime.side_effect = ConfigurationError("maskawa token missing")
        response = client.post("/banking/airtime/", json=AIRTIME_BODY, headers=auth_headers(user_with_pin))

        assert response.status_code == 503
        assert response.json() == {
            "detail": "This service is temporarily unavailable. Please try again later.",
            "code": "configuration_error",
        }

    def test_insufficient_funds(self, client, services, providers):
        poor = make_user(services, email="poor@example.com", balance_kobo=10000, pin=PIN)
        response = client.post("/banking/airtime/", json=AIRTIME_BODY, headers=auth_headers(poor))

        assert response.status_code == 400
        assert response.json()["code"] == "insufficient_funds"
        providers.buy_airtime.assert_not_called()

    def test_invalid_phone_number(self, client, user_with_pin):
        response = client.post("/banking/airtime/", json={**AIRTIME_BODY, "phone_number": "12345"},
                               headers=auth_headers(user_with_pin))
        assert response.status_code == 422

    def test_buy_data_at_the_configured_price(self, client, services, user_with_pin, providers):
        services.pricing.set_price(TransactionType.DATA, 2, "217", "300")
        response = client.post("/banking/data/", json={
            "network_code": 2, "phone_number": "08021234567", "plan_external_id": "217", "amount": "0.01", "pin": PIN,
        }, headers=auth_headers(user_with_pin))

        assert response.status_code == 200
        assert response.json()["transaction"]["amount"] == "300.00"
        assert response.json()["new_balance"] == "4700.00"
        assert providers.buy_data.call_args.args[0].plan_external_id == "217"

    def test_unpriced_plan_is_rejected(self, client, services, user_with_pin, providers):
        response = client.post("/banking/data/", json={
            "network_code": 2, "phone_number": "08021234567", "plan_external_id": "999", "pin": PIN,
        }, headers=auth_headers(user_with_pin))

        assert response.status_code == 400
        assert response.json()["code"] == "unknown_plan"
        assert providers.buy_data.call_count == 0
        assert services.ledger.get_balance(user_with_pin.id) == Decimal("5000.00")

    def test_buy_cable_at_the_configured_price(self, client, services, user_with_pin, providers):
        services.pricing.set_price(TransactionType.CABLE, 2, "7", "2500")
        response = client.post("/banking/cable/", json={
            "cable_code": 2, "plan_external_id": "7", "smart_card_number": "7023456789", "pin": PIN,
        }, headers=auth_headers(user_with_pin))

        assert response.status_code == 200
        assert response.json()["new_balance"] == "2500.00"
        providers.buy_cable.assert_called_once()

    def test_deposit_starts_pending(self, client, services, user):
        response = client.post("/banking/deposit/", json={"amount": "2000"}, headers=auth_headers(user))

        assert response.status_code == 201
        body = response.json()
        assert body["transaction"]["status"] == "pending"
        assert body["reference"].startswith("WALLET_FUNDING_")
        assert services.ledger.get_balance(user.id) == Decimal("5000.00")

    def test_validate_meter(self, client, user, providers):
        providers.validate_meter.return_value = CustomerVerification(
            customer_name="ADEBAYO OLUWASEUN", address="12 Allen Avenue", raw={"name": "ADEBAYO OLUWASEUN"})
        response = client.post("/banking/electricity/validate/", json={
            "disco_code": "ikeja", "meter_number": "45031234567",
        }, headers=auth_headers(user))

        assert response.status_code == 200
        assert response.json() == {"customer_name": "ADEBAYO OLUWASEUN", "address": "12 Allen Avenue",
                                   "due_date": None}


class TestPinEndpoints:

    def test_set_status_verify(self, client, user):
        headers = auth_headers(user)
        assert client.post("/pin/set/", json={"new_pin": "4821"}, headers=headers).status_code == 200
        assert client.get("/pin/status/", headers=headers).json()["has_pin"] is True
        assert client.post("/pin/verify/", json={"pin": "4821"}, headers=headers).json() == {"verified": True}

        response = client.post("/pin/verify/", json={"pin": "0000"}, headers=headers)
        assert response.status_code == 400
        assert response.json()["remaining_attempts"] == 4

    def test_malformed_pin(self, client, user):
        response = client.post("/pin/set/", json={"new_pin": "12"}, headers=auth_headers(user))
        assert response.status_code == 422

    def test_change_pin_needs_current(self, client, user_with_pin):
        headers = auth_headers(user_with_pin)
        response = client.post("/pin/set/", json={"new_pin": "9999"}, headers=headers)
        assert response.status_code == 400

        response = client.post("/pin/set/", json={"new_pin": "9999", "current_pin": PIN}, headers=headers)
        assert response.status_code == 200

    def test_reset_requires_password(self, client, user_with_pin):
        headers = auth_headers(user_with_pin)
        assert client.post("/pin/reset/", json={"password": "wrong"}, headers=headers).status_code == 400

        response = client.post("/pin/reset/", json={"password": PASSWORD}, headers=headers)
        assert response.status_code == 200
        assert client.get("/pin/status/", headers=headers).json()["has_pin"] is False


class TestAdmin:

    def test_requires_admin(self, client, user):
        response = client.get("/admin/audit-logs/", headers=auth_headers(user))
        assert response.status_code == 403

    def test_fund_wallet_and_balance(self, client, user, admin):
        response = client.post(f"/admin/users/{user.id}/fund/", json={"amount": "1500"}, headers=auth_headers(admin))
        assert response.status_code == 201
        assert response.json()["new_balance"] == "6500.00"

        summary = client.get(f"/admin/users/{user.id}/balance/", headers=auth_headers(admin)).json()
        assert summary == {"credits": "1500.00", "debits": "0.00", "balance": "6500.00"}

        logs = client.get("/admin/audit-logs/", params={"action": "fund_wallet"}, headers=auth_headers(admin)).json()
        assert logs["logs"][0]["target_user_id"] == user.id

    def test_unknown_user_balance(self, client, admin):
        response = client.get("/admin/users/000000000000000000000000/balance/", headers=auth_headers(admin))
        assert response.status_code == 404

    def test_reset_user_pin(self, client, services, user_with_pin, admin):
        response = client.post(f"/admin/users/{user_with_pin.id}/pin/reset/", headers=auth_headers(admin))

        assert response.status_code == 200
        assert services.users.get(user_with_pin.id).has_pin is False
        assert services.audit_log.list(action="reset_user_pin")[0].actor_id == admin.id

    def test_provider_settings(self, client, services, admin):
        headers = auth_headers(admin)
        response = client.put("/admin/settings/provider/", json={
            "active_provider": "NaijaDataSub",
            "token": "nds_token",
            "base_url": "https://www.naijadatasub.com",
        }, headers=headers)
        assert response.status_code == 200

        settings = client.get("/admin/settings/provider/", headers=headers).json()
        assert settings["active_provider"] == "naijadatasub"
        assert settings["providers"]["naijadatasub"] == {
            "base_url": "https://www.naijadatasub.com",
            "token_configured": True,
        }
        assert "nds_token" not in str(settings)
        assert services.audit_log.list(action="update_provider_settings")[0].actor_id == admin.id

    def test_unknown_provider_rejected(self, client, admin):
        response = client.put("/admin/settings/provider/", json={"active_provider": "vtpass"},
                              headers=auth_headers(admin))
        assert response.status_code == 400

    def test_reconciliation_queue(self, client, services, user_with_pin, admin, providers):
        def drain_wallet(request):
            services.ledger.debit(user_with_pin.id, 4500)
            return provider_success()

        providers.buy_airtime.side_effect = drain_wallet
        bought = client.post("/banking/airtime/", json=AIRTIME_BODY, headers=auth_headers(user_with_pin)).json()
        assert bought["transaction"]["reconciliation_required"] is True

        queue = client.get("/admin/transactions/reconciliation/", headers=auth_headers(admin)).json()
        assert [t["reference"] for t in queue["transactions"]] == [bought["transaction"]["reference"]]

    def test_set_plan_price(self, client, services, admin):
        response = client.put("/admin/plans/data/1/217/price/", json={"price": "350"}, headers=auth_headers(admin))

        assert response.status_code == 200
        assert response.json()["price"] == "350.00"
        assert services.pricing.price(TransactionType.DATA, 1, "217") == Decimal("350.00")
        entry = services.audit_log.list(action="update_plan_price")[0]
        assert entry.actor_id == admin.id

    def test_only_data_and_cable_are_priced(self, client, user, admin):
        response = client.put("/admin/plans/airtime/1/x/price/", json={"price": "100"}, headers=auth_headers(admin))
        assert response.status_code == 400
        response = client.put("/admin/plans/data/1/217/price/", json={"price": "100"}, headers=auth_headers(user))
        assert response.status_code == 403
