import base64

import pytest

import admin
from cart import CartManager
from errors import NotFound, ValidationFailed
from orders import place_order
from schemas import CustomerTier

ADMIN_ROUTES = [
    ("get", "/api/admin/products", None),
    ("post", "/api/admin/products", {"name": "X", "category": "dairy", "price": 10}),
    ("put", "/api/admin/products", {"id": "000000000000000000000000", "price": 10}),
    ("delete", "/api/admin/products", {"id": "000000000000000000000000"}),
    ("get", "/api/admin/categories", None),
    ("post", "/api/admin/categories", {"name": "Spices"}),
    ("delete", "/api/admin/categories", {"id": "000000000000000000000000"}),
    ("get", "/api/admin/orders", None),
    ("put", "/api/admin/orders", {"id": "000000000000000000000000", "order_status": "shipped"}),
    ("get", "/api/admin/customers", None),
    ("get", "/api/admin/stats", None),
    ("post", "/api/admin/upload", {"file_name": "a.png", "file_base64": "aGVsbG8="}),
]


@pytest.fixture
def admin_user(make_user):
    return make_user(is_admin=True)


@pytest.mark.parametrize("method,path,body", ADMIN_ROUTES)
def test_admin_routes_need_login(client, method, path, body):
    resp = client.request(method.upper(), path, json=body)
    assert resp.status_code == 401


@pytest.mark.parametrize("method,path,body", ADMIN_ROUTES)
def test_admin_routes_reject_customers(client, make_user, method, path, body):
    resp = client.request(method.upper(), path, json=body, headers=make_user()["headers"])
    assert resp.status_code == 403
    assert resp.json() == {"error": "Admin access required"}


def test_category_in_use_cannot_be_deleted(db, make_product):
    category = admin.create_category(db, "Cold Pressed Oils")
    assert category["slug"] == "cold-pressed-oils"
    for name in ("Groundnut Oil", "Sesame Oil", "Coconut Oil"):
        make_product(name=name, category=category["slug"])

    with pytest.raises(ValidationFailed) as exc:
        admin.delete_category(db, category["id"])
    assert "3 products" in exc.value.message
    assert db["categories"].count_documents({}) == 1


def test_unused_category_is_deleted(db):
    category = admin.create_category(db, "Spices")
    admin.delete_category(db, category["id"])
    assert db["categories"].count_documents({}) == 0
    with pytest.raises(NotFound):
        admin.delete_category(db, category["id"])


def test_product_slug_follows_name(db):
    product = admin.create_product(db, {"name": "Desi Ghee (500 ml)", "category": "dairy", "price": 650})
    assert product["slug"] == "desi-ghee-500-ml"
    assert product["moq"] == 1 and product["in_stock"] is True

    updated = admin.update_product(db, product["id"], {"name": "Bilona Ghee", "b2b_price": 580})
    assert updated["slug"] == "bilona-ghee"
    assert updated["b2b_price"] == 580
    assert updated["price"] == 650


def test_order_status_values_are_checked(db, make_user):
    user = make_user()
    oid = db["orders"].insert_one({"order_number": "GE-2026-0001", "user_id": user["id"],
                                   "order_status": "placed", "payment_status": "pending"}).inserted_id
    with pytest.raises(ValidationFailed) as exc:
        admin.update_order_status(db, str(oid), order_status="teleported")
    assert exc.value.message.startswith("Invalid order status. Must be one of: placed")

    order = admin.update_order_status(db, str(oid), order_status="shipped", payment_status="paid")
    assert (order["order_status"], order["payment_status"]) == ("shipped", "paid")

    with pytest.raises(NotFound):
        admin.update_order_status(db, "000000000000000000000000", order_status="shipped")


def test_customer_spend_counts_paid_orders_only(db, make_user, make_product, make_address):
    user = make_user()
    address = make_address(user["id"])
    p = make_product(price=200)
    placed = []
    for _ in range(2):
        CartManager(db, user["id"]).add_item(str(p["_id"]), 3)
        placed.append(place_order(db, user["id"], CustomerTier.individual, str(address["_id"]), "cod"))
    admin.update_order_status(db, placed[1]["id"], payment_status="paid")

    customers = admin.list_customers(db)
    assert len(customers) == 1
    assert customers[0]["order_count"] == 2
    assert customers[0]["total_spent"] == 600

    detail = admin.get_customer(db, user["id"])
    assert {o["id"] for o in detail["orders"]} == {o["id"] for o in placed}
    assert detail["orders"][0]["items"][0]["quantity"] == 3


def test_stats(db, make_user, make_product):
    user = make_user()
    make_user(is_admin=True)
    make_product()
    db["orders"].insert_many([
        {"order_number": "GE-2026-0001", "user_id": user["id"], "total": 700.0,
         "order_status": "confirmed", "payment_status": "paid"},
        {"order_number": "GE-2026-0002", "user_id": user["id"], "total": 130.0,
         "order_status": "delivered", "payment_status": "pending"},
    ])
    result = admin.stats(db)
    assert result["stats"] == {
        "total_orders": 2,
        "pending_orders": 1,
        "total_revenue": 700,
        "total_customers": 1,
        "total_products": 1,
    }
    assert result["orders_by_status"] == {"confirmed": 1, "delivered": 1}
    assert result["recent_orders"][0]["profile"]["full_name"] == "Test User"


def test_upload_rejects_bad_payloads(image_store):
    with pytest.raises(ValidationFailed):
        admin.upload_image(image_store, "a.png", "not base64!!")
    with pytest.raises(ValidationFailed):
        admin.upload_image(image_store, "a.png", "data:image/png;base64,")
    assert image_store.files == {}


# HTTP

def test_admin_catalog_endpoints(client, admin_user):
    headers = admin_user["headers"]
    resp = client.post("/api/admin/products", json={"name": "Jaggery Powder", "category": "oils", "price": 120},
                       headers=headers)
    assert resp.status_code == 201
    product = resp.json()["product"]

    resp = client.put("/api/admin/products", json={"id": product["id"], "in_stock": False}, headers=headers)
    assert resp.json()["product"]["in_stock"] is False
    assert client.get("/api/products").json()["products"] == []
    assert len(client.get("/api/admin/products", headers=headers).json()["products"]) == 1

    resp = client.request("DELETE", "/api/admin/products", json={"id": product["id"]}, headers=headers)
    assert resp.status_code == 200
    resp = client.request("DELETE", "/api/admin/products", json={"id": product["id"]}, headers=headers)
    assert resp.status_code == 404


def test_category_delete_over_http(client, admin_user, make_product):
    headers = admin_user["headers"]
    category = client.post("/api/admin/categories", json={"name": "Millets"}, headers=headers).json()["category"]
    make_product(category=category["id"])
    resp = client.request("DELETE", "/api/admin/categories", json={"id": category["id"]}, headers=headers)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Cannot delete category. 1 products are using it."}


def test_categories_fall_back_to_defaults(client):
    body = client.get("/api/categories").json()
    assert body["is_default"] is True
    assert [c["slug"] for c in body["categories"]] == ["dairy", "grains", "oils"]


def test_admin_orders_listing(client, db, admin_user, make_user):
    user = make_user()
    db["orders"].insert_many([
        {"order_number": f"GE-2026-000{n}", "user_id": user["id"], "order_status": status,
         "payment_status": "pending", "total": 100.0}
        for n, status in enumerate(["placed", "shipped", "placed"], start=1)
    ])

    body = client.get("/api/admin/orders?status=placed&limit=1", headers=admin_user["headers"]).json()
    assert body["total"] == 3
    assert body["limit"] == 1
    assert len(body["orders"]) == 1
    assert body["orders"][0]["order_status"] == "placed"
    assert body["orders"][0]["profile"]["full_name"] == "Test User"


def test_customer_detail_over_http(client, admin_user, make_user):
    user = make_user()
    resp = client.get(f"/api/admin/customers?id={user['id']}", headers=admin_user["headers"])
    assert resp.status_code == 200
    assert resp.json()["customer"]["email"] == user["email"]
    assert resp.json()["orders"] == []

    listing = client.get("/api/admin/customers", headers=admin_user["headers"]).json()["customers"]
    assert [c["id"] for c in listing] == [user["id"]]


def test_upload_then_fetch_image(client, admin_user):
    payload = base64.b64encode(b"\x89PNG fake image").decode()
    resp = client.post("/api/admin/upload", json={"file_name": "ghee.PNG", "file_base64": f"data:image/png;base64,{payload}",
                                                  "content_type": "image/png"}, headers=admin_user["headers"])
    assert resp.status_code == 201
    body = resp.json()
    assert body["path"].endswith(".png")
    assert body["url"].endswith(f"/api/images/{body['path']}")

    image = client.get(f"/api/images/{body['path']}")
    assert image.status_code == 200
    assert image.content == b"\x89PNG fake image"
    assert image.headers["content-type"] == "image/png"

    assert client.get("/api/images/missing.png").status_code == 404


def test_invalid_base64_over_http(client, admin_user):
    resp = client.post("/api/admin/upload", json={"file_name": "a.png", "file_base64": "%%%"},
                       headers=admin_user["headers"])
    assert resp.status_code == 400
    assert resp.json() == {"error": "file_base64 is not valid base64"}


@pytest.mark.parametrize("field", ["price", "name", "category", "moq", "in_stock"])
def test_required_product_fields_cannot_be_nulled(client, admin_user, make_product, field):
    p = make_product(price=100)
    resp = client.put("/api/admin/products", json={"id": str(p["_id"]), field: None},
                      headers=admin_user["headers"])
    assert resp.status_code == 400
    assert field in resp.json()["error"]

    listing = client.get("/api/products").json()["products"]
    assert [(item["name"], item["price"]) for item in listing] == [("A2 Ghee", 100)]


def test_optional_product_fields_can_be_cleared(client, admin_user, make_product):
    p = make_product(price=250, b2b_price=200, description="Cultured butter ghee")
    resp = client.put("/api/admin/products", json={"id": str(p["_id"]), "b2b_price": None, "description": None},
                      headers=admin_user["headers"])
    assert resp.status_code == 200
    product = resp.json()["product"]
    assert product["b2b_price"] is None and product["description"] is None
    assert product["price"] == 250


def test_category_name_cannot_be_nulled(client, admin_user):
    category = client.post("/api/admin/categories", json={"name": "Millets"},
                           headers=admin_user["headers"]).json()["category"]
    resp = client.put("/api/admin/categories", json={"id": category["id"], "name": None},
                      headers=admin_user["headers"])
    assert resp.status_code == 400
