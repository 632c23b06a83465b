import pytest
from fastapi.testclient import TestClient

from factories import make_user, make_admin, make_product, make_voucher, make_reward
from config.database import get_db
from common.security import create_token
from main import app
from modules.admin.permissions import Permission


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(user) -> dict:
    return {"Authorization": f"Bearer {create_token({'sub': str(user.id)})}"}


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_login_required(client):
    assert client.get("/api/cart").status_code == 401


def test_cart_checkout_flow(client, db):
    user = make_user(db)
    product = make_product(db, price="25000")
    voucher = make_voucher(db, discount="5000", quantity=3)
    db.commit()
    headers = _auth(user)

    added = client.post("/api/cart/items", json={"product_id": product.id, "quantity": 2}, headers=headers)
    assert added.status_code == 201
    cart = client.get("/api/cart", headers=headers).json()
    assert cart["total"] == "50000.00"
    assert cart["cart_count"] == 2

    options = client.get("/api/vouchers/checkout-options", headers=headers).json()
    assert options["cart_total"] == "50000.00"
    option = next(o for o in options["options"] if o["voucher_id"] == voucher.id)
    assert option["eligible"]
    assert option["potential_discount"] == "5000.00"

    response = client.post("/api/orders/checkout", json={"voucher_ids": [voucher.id]}, headers=headers)
    assert response.status_code == 201
    body = response.json()
    assert body["vouchers"]["success"]
    assert body["order"]["status"] == "PENDING"
    assert body["order"]["total_price"] == "50000.00"
    assert body["order"]["discount"] == "5000.00"
    assert body["order"]["total_bill"] == "45000.00"

    order_id = body["order"]["id"]
    assert client.get(f"/api/orders/{order_id}", headers=headers).json()["id"] == order_id
    cancelled = client.post(f"/api/orders/{order_id}/cancel", headers=headers).json()
    assert cancelled["status"] == "CANCELLED"
    assert cancelled["vouchers"] == []


def test_checkout_with_empty_cart_is_422(client, db):
    user = make_user(db)
    db.commit()

    response = client.post("/api/orders/checkout", json={}, headers=_auth(user))

    assert response.status_code == 422
    assert "cart" in response.json()["errors"]


def test_other_users_order_is_404(client, db):
    owner, stranger = make_user(db), make_user(db)
    product = make_product(db)
    db.commit()
    headers = _auth(owner)
    client.post("/api/cart/items", json={"product_id": product.id}, headers=headers)
    order_id = client.post("/api/orders/checkout", json={}, headers=headers).json()["order"]["id"]

    assert client.get(f"/api/orders/{order_id}", headers=_auth(stranger)).status_code == 404


def test_redeem_and_consume(client, db):
    user = make_user(db, point=250)
    reward = make_reward(db, point_cost=100)
    db.commit()
    headers = _auth(user)

    catalogue = client.get("/api/rewards", headers=headers).json()
    assert [r["id"] for r in catalogue["rewards"]] == [reward.id]
    assert catalogue["loyalty"]["point"] == 250

    redeemed = client.post(f"/api/rewards/{reward.id}/redeem", json={"quantity": 2}, headers=headers).json()
    assert redeemed["success"]
    assert redeemed["remaining_points"] == 50
    code = redeemed["redemption_codes"][0]

    again = client.post(f"/api/rewards/{reward.id}/redeem", json={"quantity": 1}, headers=headers).json()
    assert again["success"] is False
    assert again["reason"] == "INSUFFICIENT_POINTS"

    first = client.post("/api/rewards/redemptions/consume", json={"code": code}, headers=headers).json()
    second = client.post("/api/rewards/redemptions/consume", json={"code": code}, headers=headers).json()
    assert first["success"]
    assert second["reason"] == "REDEMPTION_ALREADY_USED"


def test_admin_voucher_endpoints_check_permissions(client, db):
    viewer = make_admin(db, permissions=[Permission.VOUCHER_VIEW])
    editor = make_admin(db, permissions=[Permission.VOUCHER_VIEW, Permission.VOUCHER_CREATE])
    customer = make_user(db)
    db.commit()
    payload = {"code": "NEW5", "name": "New", "discount_type": "MONEY", "discount": "5000", "is_lifetime": True}

    assert client.post("/admin/api/vouchers", json=payload, headers=_auth(customer)).status_code == 401
    assert client.post("/admin/api/vouchers", json=payload, headers=_auth(viewer)).status_code == 403

    created = client.post("/admin/api/vouchers", json=payload, headers=_auth(editor))
    assert created.status_code == 201
    assert created.json()["code"] == "NEW5"
    assert created.json()["discount"] == "5000.00"

    duplicate = client.post("/admin/api/vouchers", json=payload, headers=_auth(editor))
    assert duplicate.status_code == 409


def test_admin_status_change_credits_loyalty(client, db):
    admin = make_admin(db)
    user = make_user(db)
    product = make_product(db, price="2000")
    db.commit()
    client.post("/api/cart/items", json={"product_id": product.id}, headers=_auth(user))
    order_id = client.post("/api/orders/checkout", json={}, headers=_auth(user)).json()["order"]["id"]

    response = client.post(f"/admin/api/orders/{order_id}/status", json={"status": "PAID"}, headers=_auth(admin))

    assert response.status_code == 200
    body = response.json()
    assert body["order"]["status"] == "PAID"
    assert body["loyalty"]["applied"]
    assert body["loyalty"]["exp_earned"] == 2000

    bad = client.post(f"/admin/api/orders/{order_id}/status", json={"status": "PENDING"}, headers=_auth(admin))
    assert bad.status_code == 422


def test_loyalty_leaderboard_and_settings(client, db):
    manager = make_admin(db, permissions=[Permission.CUSTOMER_MANAGE])
    user = make_user(db, total_point=10)
    db.commit()

    board = client.get("/api/loyalty/leaderboard", headers=_auth(user)).json()
    assert [row["user_id"] for row in board["leaderboard"]] == [user.id]

    response = client.put(
        f"/admin/api/users/{user.id}/loyalty-settings",
        json={"booster": "1.5", "exclude_from_leaderboard": True},
        headers=_auth(manager),
    )
    assert response.status_code == 200
    assert client.get("/api/loyalty/leaderboard", headers=_auth(user)).json()["leaderboard"] == []
