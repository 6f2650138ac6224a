from conftest import bearer

NEW_PRODUCT = {
    "name": "Salt Lamp",
    "brand": "Himalaya",
    "price": 25.5,
    "max_quantity": 5,
    "description": "Pink salt",
    "is_featured": True,
    "quantity": 7,
    "image": "/static/lamp.png",
    "image_collection": ["/static/lamp-1.png", "/static/lamp-2.png"],
}


def test_list_products_pages(client):
    first = client.get("/products", params={"offset": 0, "limit": 12}).json()
    assert [p["id"] for p in first["products"]] == [str(i) for i in range(1, 13)]
    assert first["last_key"] == 12
    assert first["total"] == 24

    second = client.get("/products", params={"offset": 12, "limit": 12}).json()
    assert [p["id"] for p in second["products"]] == [str(i) for i in range(13, 25)]
    assert second["last_key"] is None
    assert second["total"] == 24


def test_list_products_defaults(client):
    body = client.get("/products").json()
    assert len(body["products"]) == 12
    assert body["products"][0]["name"] == "Sample Product 1"
    assert body["products"][0]["image_collection"] == []


def test_search_is_case_insensitive_substring(client):
    body = client.get("/products/search", params={"q": "sample product 5", "limit": 12}).json()
    assert [p["name"] for p in body["products"]] == ["Sample Product 5"]

    body = client.get("/products/search", params={"q": "SAMPLE Product 5"}).json()
    assert [p["name"] for p in body["products"]] == ["Sample Product 5"]


def test_search_empty_query_matches_all_ordered_by_name(client):
    products = client.get("/products/search", params={"limit": 30}).json()["products"]
    assert len(products) == 24
    names = [p["name_lower"] for p in products]
    assert names == sorted(names)


def test_search_wildcards_match_literally(client):
    assert client.get("/products/search", params={"q": "%"}).json()["products"] == []
    assert client.get("/products/search", params={"q": "_"}).json()["products"] == []


def test_featured(client):
    products = client.get("/products/featured").json()["products"]
    assert [p["name"] for p in products] == ["Sample Product 5", "Sample Product 10", "Sample Product 15", "Sample Product 20"]
    assert all(p["is_featured"] for p in products)

    products = client.get("/products/featured", params={"limit": 2}).json()["products"]
    assert len(products) == 2


def test_recommended_is_most_recent(client):
    products = client.get("/products/recommended", params={"limit": 3}).json()["products"]
    assert [p["name"] for p in products] == ["Sample Product 1", "Sample Product 2", "Sample Product 3"]


def test_get_product(client):
    res = client.get("/products/3")
    assert res.status_code == 200
    assert res.json()["product"]["name"] == "Sample Product 3"


def test_get_missing_product(client):
    res = client.get("/products/999")
    assert res.status_code == 404
    assert res.json() == {"message": "Product not found"}


def test_non_numeric_product_id_is_not_found(client, admin):
    assert client.get("/products/abc").status_code == 404
    assert client.put("/products/abc", json=NEW_PRODUCT, headers=bearer(admin["token"])).status_code == 404
    res = client.delete("/products/abc", headers=bearer(admin["token"]))
    assert res.status_code == 200
    assert res.json() == {"ok": True}


def test_create_product_defaults(client, admin):
    res = client.post("/products", json={"name": "Bare"}, headers=bearer(admin["token"]))
    assert res.status_code == 200
    product = client.get(f"/products/{res.json()['id']}").json()["product"]
    assert product["name_lower"] == "bare"
    assert product["brand"] == ""
    assert product["price"] == 0
    assert product["quantity"] == 0
    assert product["description"] == ""
    assert product["is_featured"] is False
    assert product["image_collection"] == []
    assert product["date_added"]


def test_create_product_requires_admin(client, alice):
    res = client.post("/products", json=NEW_PRODUCT, headers=bearer(alice["token"]))
    assert res.status_code == 403


def test_create_product_rejects_negative_price(client, admin):
    res = client.post("/products", json={**NEW_PRODUCT, "price": -1}, headers=bearer(admin["token"]))
    assert res.status_code == 400


def test_update_replaces_all_fields(client, admin):
    created = client.post("/products", json=NEW_PRODUCT, headers=bearer(admin["token"])).json()
    fields = {
        "name": "Salt LAMP Deluxe",
        "brand": "",
        "price": 30,
        "max_quantity": 1,
        "description": "",
        "is_featured": False,
        "quantity": 0,
        "image": "",
        "image_collection": [],
    }
    res = client.put(f"/products/{created['id']}", json=fields, headers=bearer(admin["token"]))
    assert res.status_code == 200

    product = client.get(f"/products/{created['id']}").json()["product"]
    for key, value in fields.items():
        assert product[key] == value
    assert product["name_lower"] == "salt lamp deluxe"
    assert product["date_added"] == created["product"]["date_added"]


def test_update_omitted_fields_reset_to_defaults(client, admin):
    created = client.post("/products", json=NEW_PRODUCT, headers=bearer(admin["token"])).json()
    client.put(f"/products/{created['id']}", json={"name": "Only Name"}, headers=bearer(admin["token"]))
    product = client.get(f"/products/{created['id']}").json()["product"]
    assert product["brand"] == ""
    assert product["image_collection"] == []
    assert product["is_featured"] is False


def test_update_missing_product(client, admin):
    res = client.put("/products/999", json=NEW_PRODUCT, headers=bearer(admin["token"]))
    assert res.status_code == 404


def test_delete_is_idempotent(client, admin):
    res = client.delete("/products/999", headers=bearer(admin["token"]))
    assert res.status_code == 200
    assert res.json() == {"ok": True}

    client.delete("/products/1", headers=bearer(admin["token"]))
    assert client.get("/products/1").status_code == 404
    assert client.delete("/products/1", headers=bearer(admin["token"])).status_code == 200


def test_delete_requires_admin(client, alice):
    assert client.delete("/products/1", headers=bearer(alice["token"])).status_code == 403


def test_ids_are_not_reused(client, admin):
    first = client.post("/products", json=NEW_PRODUCT, headers=bearer(admin["token"])).json()["id"]
    client.delete(f"/products/{first}", headers=bearer(admin["token"]))
    second = client.post("/products", json=NEW_PRODUCT, headers=bearer(admin["token"])).json()["id"]
    assert int(second) > int(first)
