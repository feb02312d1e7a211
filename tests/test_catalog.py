from bson import ObjectId

from conftest import make_product, make_shop
from database import create_document, db
from schemas import Combo


def product_body(category, **overrides):
    body = {"name": "Z6 II", "model": "Z6-2", "price": 1999.0, "stock": 3, "categories": [category]}
    body.update(overrides)
    return body


def test_admin_creates_product(client, admin, category):
    res = client.post("/api/products", json=product_body(category), headers=admin["headers"])
    assert res.status_code == 201
    assert res.json()["data"]["categories"] == [category]


def test_product_requires_known_category(client, admin, category):
    missing = str(ObjectId())
    res = client.post("/api/products", json=product_body(category, categories=[missing]), headers=admin["headers"])
    assert res.status_code == 400
    assert missing in res.json()["message"]


def test_product_rejects_negative_price(client, admin, category):
    res = client.post("/api/products", json=product_body(category, price=-1), headers=admin["headers"])
    assert res.status_code == 400


def test_shop_needs_active_package_to_create(client, category):
    unpaid = make_shop("unpaid", has_active_package=False)
    res = client.post("/api/products", json=product_body(category), headers=unpaid["headers"])
    assert res.status_code == 403

    paid = make_shop("paid")
    assert client.post("/api/products", json=product_body(category), headers=paid["headers"]).status_code == 201


def test_customer_cannot_create_product(client, customer, category):
    assert client.post("/api/products", json=product_body(category), headers=customer["headers"]).status_code == 403


def test_manager_edits_price_and_description_only(client, manager, product):
    res = client.put(f"/api/products/{product}", json={"price": 850}, headers=manager["headers"])
    assert res.status_code == 200
    assert res.json()["data"]["price"] == 850

    res = client.put(f"/api/products/{product}", json={"price": 800, "stock": 99}, headers=manager["headers"])
    assert res.status_code == 403
    assert client.put(f"/api/products/{product}", json={}, headers=manager["headers"]).status_code == 400
    assert db["product"].find_one({"_id": ObjectId(product)})["stock"] == 5


def test_admin_full_update_is_validated(client, admin, product):
    res = client.put(f"/api/products/{product}", json={"stock": 12, "name": "Alpha 7 IV"}, headers=admin["headers"])
    assert res.json()["data"]["stock"] == 12
    assert client.put(f"/api/products/{product}", json={"stock": -3}, headers=admin["headers"]).status_code == 400


def test_delete_product_used_by_combos(client, admin, category, product):
    create_document("combo", Combo(name="Starter Kit", products=[product], area="Hanoi", price=900))
    create_document("combo", Combo(name="Travel Kit", products=[product], area="Hue", price=950))

    res = client.delete(f"/api/products/{product}", headers=admin["headers"])
    assert res.status_code == 400
    assert "Starter Kit" in res.json()["message"] and "Travel Kit" in res.json()["message"]

    spare = make_product(category, name="Spare")
    assert client.delete(f"/api/products/{spare}", headers=admin["headers"]).status_code == 200


def test_product_filters_and_pagination(client, category):
    make_product(category, name="Cheap", price=100, stock=1)
    make_product(category, name="Mid", price=500, stock=10)
    make_product(category, name="Pricey", price=3000, stock=2)

    res = client.get("/api/products", params={"min_price": 200, "max_price": 4000}).json()
    assert {p["name"] for p in res["data"]} == {"Mid", "Pricey"}

    res = client.get("/api/products", params={"keyword": "chea"}).json()
    assert [p["name"] for p in res["data"]] == ["Cheap"]

    res = client.get("/api/products", params={"limit": 2, "page": 2}).json()
    assert res["total"] == 3 and res["pages"] == 2 and len(res["data"]) == 1


def test_product_detail_expands_references(client, category, product):
    data = client.get(f"/api/products/{product}").json()["data"]
    assert data["category_info"][0]["name"] == "Mirrorless"
    assert client.get(f"/api/products/{ObjectId()}").status_code == 404


def test_brand_names_are_unique(client, admin, customer):
    assert client.post("/api/brands", json={"name": "Nikon"}, headers=customer["headers"]).status_code == 403
    assert client.post("/api/brands", json={"name": "Nikon"}, headers=admin["headers"]).status_code == 201
    assert client.post("/api/brands", json={"name": "Nikon"}, headers=admin["headers"]).status_code == 400
    assert [b["name"] for b in client.get("/api/brands").json()["data"]] == ["Nikon"]


def test_product_type_crud(client, admin):
    res = client.post("/api/product-types", json={"name": "DSLR"}, headers=admin["headers"])
    type_id = res.json()["data"]["id"]
    assert client.post("/api/product-types", json={"name": "DSLR"}, headers=admin["headers"]).status_code == 400
    res = client.put(f"/api/product-types/{type_id}", json={"description": "Mirror cameras"}, headers=admin["headers"])
    assert res.json()["data"]["description"] == "Mirror cameras"
    assert client.delete(f"/api/product-types/{type_id}", headers=admin["headers"]).status_code == 200
    assert client.get(f"/api/product-types/{type_id}").status_code == 404


def test_combo_products_must_exist(client, admin, product):
    body = {"name": "Vlog Kit", "products": [product, str(ObjectId())], "area": "Hanoi", "price": 1200}
    assert client.post("/api/combos", json=body, headers=admin["headers"]).status_code == 400

    body["products"] = [product]
    res = client.post("/api/combos", json=body, headers=admin["headers"])
    assert res.status_code == 201
    assert res.json()["data"]["products"][0]["name"] == "Alpha 7"

    listed = client.get("/api/combos", params={"area": "Hanoi"}).json()["data"]
    assert len(listed) == 1
    assert client.get("/api/combos", params={"combo_type": "premium"}).json()["data"] == []


def test_combo_stores_canonical_product_ids(client, admin, product):
    body = {"name": "Studio Kit", "products": [product.upper()], "area": "Hanoi", "price": 1500}
    res = client.post("/api/combos", json=body, headers=admin["headers"])
    assert res.status_code == 201
    assert res.json()["data"]["products"][0]["name"] == "Alpha 7"
    assert db["combo"].find_one({"name": "Studio Kit"})["products"] == [product]

    res = client.delete(f"/api/products/{product}", headers=admin["headers"])
    assert res.status_code == 400
    assert "Studio Kit" in res.json()["message"]


def test_product_categories_are_stored_canonically(client, admin, category):
    res = client.post("/api/products", json=product_body(category, categories=[category.upper()]), headers=admin["headers"])
    assert res.json()["data"]["categories"] == [category]
    product_id = res.json()["data"]["id"]

    res = client.put(f"/api/products/{product_id}", json={"categories": [category.upper()]}, headers=admin["headers"])
    assert res.json()["data"]["categories"] == [category]
