from conftest import make_user
from models import Category, Review


def names(response):
    return sorted(p["name"] for p in response.json()["products"])


def test_list_products(client, catalog):
    response = client.get("/api/products")

    assert response.status_code == 200
    body = response.json()
    assert len(body["products"]) == len(catalog)
    assert body["pagination"] == {"page": 1, "limit": 20, "total": len(catalog), "totalPages": 1}
    assert body["products"][0]["category"]["name"]


def test_price_and_category_filters(client, catalog):
    in_range = client.get("/api/products", params={"minPrice": 50000, "maxPrice": 130000})
    power_tools = client.get("/api/products", params={"categoryId": catalog["Cordless drill 18V"].category_id})

    assert names(in_range) == ["Insulated pliers 8 inch", "Screwdriver set 6 pieces"]
    assert names(power_tools) == ["Angle grinder 100mm", "Cordless drill 18V"]


def test_search_is_case_insensitive(client, catalog):
    assert names(client.get("/api/products", params={"search": "PLIERS"})) == ["Insulated pliers 8 inch"]
    assert names(client.get("/api/products", params={"search": "grinder for"})) == ["Angle grinder 100mm"]


def test_inactive_products_hidden(client, db, catalog):
    catalog["Tape measure 5m"].is_active = False
    db.commit()

    assert "Tape measure 5m" not in names(client.get("/api/products"))


def test_pagination(client, catalog):
    first = client.get("/api/products", params={"page": 1, "limit": 4}).json()
    last = client.get("/api/products", params={"page": 3, "limit": 4}).json()

    assert len(first["products"]) == 4
    assert len(last["products"]) == len(catalog) - 8
    assert last["pagination"]["totalPages"] == 3


def test_product_detail_with_reviews(client, db, catalog):
    hammer = catalog["Sledgehammer 2kg"]
    reviewer = make_user(db, email="reviewer@example.com")
    db.add_all([
        Review(product_id=hammer.id, user_id=reviewer.id, rating=5, comment="Solid"),
        Review(product_id=hammer.id, user_id=reviewer.id, rating=4),
    ])
    db.commit()

    response = client.get(f"/api/products/{hammer.id}")

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Sledgehammer 2kg"
    assert body["category"]["name"] == "Hand tools"
    assert body["reviewCount"] == 2
    assert body["averageRating"] == 4.5
    assert {r["user"]["fullName"] for r in body["reviews"]} == {"Nguyen Van A"}


def test_product_without_reviews(client, catalog):
    body = client.get(f"/api/products/{catalog['Tape measure 5m'].id}").json()

    assert body["reviews"] == []
    assert body["averageRating"] == 0
    assert body["reviewCount"] == 0


def test_unknown_product(client):
    response = client.get("/api/products/does-not-exist")
    assert response.status_code == 404
    assert response.json()["detail"] == "Product not found"


def test_categories(client, db, catalog):
    hand_tools = db.query(Category).filter(Category.name == "Hand tools").one()
    db.add(Category(name="Hammers", parent_id=hand_tools.id))
    db.commit()

    categories = {c["name"]: c for c in client.get("/api/products/categories/all").json()}

    assert categories["Hand tools"]["productCount"] == 4
    assert [child["name"] for child in categories["Hand tools"]["children"]] == ["Hammers"]
    assert categories["Hammers"]["parentId"] == hand_tools.id
    assert categories["Hammers"]["productCount"] == 0


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
