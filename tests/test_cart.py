import pytest

from cart import CartManager, GuestCart, merge_guest_cart
from errors import LineNotFound, OutOfStock, ProductNotFound, QuantityTooLow
from schemas import CustomerTier


def test_adding_same_product_twice_keeps_one_line(db, make_product):
    p = make_product()
    cart = CartManager(db, "user-1")
    first, created = cart.add_item(str(p["_id"]), 2)
    second, created_again = cart.add_item(str(p["_id"]), 3)
    assert created and not created_again
    assert first["id"] == second["id"]
    assert second["quantity"] == 5
    assert db["cart_items"].count_documents({"user_id": "user-1"}) == 1


def test_product_reference_resolves_by_slug(db, make_product):
    p = make_product(name="Bilona Ghee", slug="dairy-002")
    cart = CartManager(db, "user-1")
    cart.add_item("dairy-002", 1)
    line, _ = cart.add_item(str(p["_id"]), 1)
    assert line["product_id"] == str(p["_id"])
    assert line["quantity"] == 2


def test_unknown_product(db):
    with pytest.raises(ProductNotFound):
        CartManager(db, "user-1").add_item("no-such-product", 1)


def test_out_of_stock_add_leaves_cart_unchanged(db, make_product):
    p = make_product(in_stock=False)
    cart = CartManager(db, "user-1")
    with pytest.raises(OutOfStock):
        cart.add_item(str(p["_id"]), 1)
    assert cart.lines() == []


def test_add_below_moq(db, make_product):
    p = make_product(moq=10)
    with pytest.raises(QuantityTooLow):
        CartManager(db, "user-1").add_item(str(p["_id"]), 9)


def test_update_below_moq_removes_line(db, make_product):
    p = make_product(moq=5)
    cart = CartManager(db, "user-1")
    line, _ = cart.add_item(str(p["_id"]), 5)
    assert cart.update_quantity(line["id"], 8)["quantity"] == 8
    assert cart.update_quantity(line["id"], 4) is None
    assert cart.lines() == []


def test_update_someone_elses_line(db, make_product):
    p = make_product()
    line, _ = CartManager(db, "owner").add_item(str(p["_id"]), 1)
    with pytest.raises(LineNotFound):
        CartManager(db, "intruder").update_quantity(line["id"], 3)


def test_remove_is_idempotent(db, make_product):
    p = make_product()
    cart = CartManager(db, "user-1")
    line, _ = cart.add_item(str(p["_id"]), 1)
    cart.remove_line(line["id"])
    cart.remove_line(line["id"])
    cart.remove_line("not-an-id")
    assert cart.lines() == []


def test_listing_skips_deleted_products(db, make_product):
    kept = make_product(name="Rice", price=120)
    gone = make_product(name="Oil", price=300)
    cart = CartManager(db, "user-1")
    cart.add_item(str(kept["_id"]), 2)
    cart.add_item(str(gone["_id"]), 1)
    db["products"].delete_one({"_id": gone["_id"]})

    listing = cart.list_cart(CustomerTier.individual)
    assert [item["product"]["name"] for item in listing["items"]] == ["Rice"]
    assert listing["subtotal"] == 240
    assert listing["item_count"] == 2
    assert listing["delivery_fee"] == 50
    assert listing["total"] == 290


def test_listing_uses_business_price(db, make_product):
    p = make_product(price=250, b2b_price=200)
    cart = CartManager(db, "user-1")
    cart.add_item(str(p["_id"]), 3)
    listing = cart.list_cart(CustomerTier.business)
    assert listing["items"][0]["product"]["display_price"] == 200
    assert listing["subtotal"] == 600
    assert listing["delivery_fee"] == 0


def test_guest_cart_follows_the_same_rules(db, make_product):
    p = make_product(moq=2, price=40)
    cart = GuestCart(db)
    line, created = cart.add_item(str(p["_id"]), 2)
    _, created_again = cart.add_item(str(p["_id"]), 1)
    assert created and not created_again
    assert len(cart.snapshot) == 1 and cart.snapshot[0]["quantity"] == 3

    assert cart.list_cart(CustomerTier.individual)["total"] == 170

    assert cart.update_quantity(line["id"], 1) is None
    assert cart.snapshot == []
    with pytest.raises(LineNotFound):
        cart.update_quantity("guest_missing", 3)


def test_merge_guest_cart_skips_bad_lines(db, make_product):
    p = make_product()
    cart = CartManager(db, "user-1")
    cart.add_item(str(p["_id"]), 1)
    result = merge_guest_cart(cart, [
        {"id": "guest_1", "product_id": str(p["_id"]), "quantity": 2},
        {"id": "guest_2", "product_id": "dairy-999", "quantity": 1},
    ])
    assert result["merged"] == 1
    assert result["skipped"] == [{"product_id": "dairy-999", "error": "Product not found"}]
    assert cart.lines()[0]["quantity"] == 3


# HTTP

def test_cart_requires_login(client):
    resp = client.get("/api/cart")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}


def test_cart_endpoints(client, make_user, make_product):
    user = make_user()
    p = make_product(price=100, moq=2)

    resp = client.post("/api/cart", json={"product_id": str(p["_id"]), "quantity": 2}, headers=user["headers"])
    assert resp.status_code == 201
    line_id = resp.json()["item"]["id"]

    resp = client.post("/api/cart", json={"product_id": p["slug"], "quantity": 3}, headers=user["headers"])
    assert resp.status_code == 200
    assert resp.json()["item"]["quantity"] == 5

    cart = client.get("/api/cart", headers=user["headers"]).json()
    assert cart["subtotal"] == 500
    assert cart["delivery_fee"] == 0
    assert cart["item_count"] == 5

    resp = client.put(f"/api/cart/{line_id}", json={"quantity": 1}, headers=user["headers"])
    assert resp.json() == {"message": "Removed from cart", "item": None}

    resp = client.delete(f"/api/cart/{line_id}", headers=user["headers"])
    assert resp.status_code == 200


def test_out_of_stock_over_http(client, make_user, make_product):
    user = make_user()
    p = make_product(name="Paneer", in_stock=False)
    resp = client.post("/api/cart", json={"product_id": str(p["_id"])}, headers=user["headers"])
    assert resp.status_code == 400
    assert resp.json() == {"error": "Paneer is out of stock"}
    assert client.get("/api/cart", headers=user["headers"]).json()["items"] == []


def test_unknown_fields_are_rejected(client, make_user, make_product):
    user = make_user()
    p = make_product()
    resp = client.post("/api/cart", json={"product_id": str(p["_id"]), "price": 1}, headers=user["headers"])
    assert resp.status_code == 400
    assert "error" in resp.json()


def test_guest_cart_endpoint(client, make_product):
    p = make_product(price=40)
    resp = client.post("/api/cart/guest", json={"op": "add", "product_id": p["slug"], "quantity": 2})
    body = resp.json()
    assert resp.status_code == 200
    assert body["items"][0]["product_id"] == str(p["_id"])
    assert body["cart"]["total"] == 130

    resp = client.post("/api/cart/guest", json={"items": body["items"], "op": "remove", "line_id": body["items"][0]["id"]})
    assert resp.json()["items"] == []


def test_merge_endpoint(client, make_user, make_product):
    user = make_user()
    p = make_product()
    resp = client.post("/api/cart/merge", json={"items": [
        {"id": "guest_1", "product_id": str(p["_id"]), "quantity": 4},
    ]}, headers=user["headers"])
    assert resp.status_code == 200
    assert resp.json()["merged"] == 1
    assert resp.json()["cart"]["item_count"] == 4
