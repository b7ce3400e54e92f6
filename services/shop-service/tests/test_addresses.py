from conftest import bearer, make_user
from models import Address


def address(label, **overrides):
    body = {
        "label": label,
        "fullName": "Nguyen Van A",
        "phone": "0901234567",
        "addressLine": f"{label} street",
        "city": "Ho Chi Minh City",
        "district": "District 1",
        "ward": "Ben Nghe",
    }
    body.update(overrides)
    return body


def defaults(db, user_id):
    db.expire_all()
    return [a.label for a in db.query(Address).filter(Address.user_id == user_id, Address.is_default.is_(True))]


def test_first_address_becomes_default(client, db, customer):
    user, headers = customer

    first = client.post("/api/addresses", json=address("Home"), headers=headers)
    second = client.post("/api/addresses", json=address("Office"), headers=headers)

    assert first.status_code == 201
    assert first.json()["isDefault"] is True
    assert second.json()["isDefault"] is False
    assert defaults(db, user.id) == ["Home"]


def test_new_default_clears_previous(client, db, customer):
    user, headers = customer
    client.post("/api/addresses", json=address("Home"), headers=headers)

    response = client.post("/api/addresses", json=address("Office", isDefault=True), headers=headers)

    assert response.json()["isDefault"] is True
    assert defaults(db, user.id) == ["Office"]


def test_fourth_address_rejected(client, db, customer):
    user, headers = customer
    for label in ("Home", "Office", "Parents"):
        assert client.post("/api/addresses", json=address(label), headers=headers).status_code == 201

    response = client.post("/api/addresses", json=address("Warehouse"), headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Maximum 3 addresses allowed per user"
    assert db.query(Address).filter(Address.user_id == user.id).count() == 3


def test_required_fields(client, customer):
    _, headers = customer
    response = client.post("/api/addresses", json=address("Home", ward="  "), headers=headers)
    assert response.status_code == 400


def test_list_puts_default_first(client, customer):
    _, headers = customer
    client.post("/api/addresses", json=address("Home"), headers=headers)
    client.post("/api/addresses", json=address("Office"), headers=headers)
    client.post("/api/addresses", json=address("Parents"), headers=headers)

    labels = [a["label"] for a in client.get("/api/addresses", headers=headers).json()]

    assert labels == ["Home", "Parents", "Office"]


def test_set_default_and_update(client, db, customer):
    user, headers = customer
    client.post("/api/addresses", json=address("Home"), headers=headers)
    office = client.post("/api/addresses", json=address("Office"), headers=headers).json()

    response = client.put(f"/api/addresses/{office['id']}/default", headers=headers)
    assert response.json()["isDefault"] is True
    assert defaults(db, user.id) == ["Office"]

    updated = client.put(f"/api/addresses/{office['id']}", json={"phone": "0911111111"}, headers=headers)
    assert updated.json()["phone"] == "0911111111"
    assert updated.json()["addressLine"] == "Office street"
    assert defaults(db, user.id) == ["Office"]


def test_update_with_default_flag_clears_others(client, db, customer):
    user, headers = customer
    client.post("/api/addresses", json=address("Home"), headers=headers)
    office = client.post("/api/addresses", json=address("Office"), headers=headers).json()

    client.put(f"/api/addresses/{office['id']}", json={"isDefault": True}, headers=headers)

    assert defaults(db, user.id) == ["Office"]


def test_deleting_default_promotes_earliest(client, db, customer):
    user, headers = customer
    home = client.post("/api/addresses", json=address("Home"), headers=headers).json()
    client.post("/api/addresses", json=address("Office"), headers=headers)
    client.post("/api/addresses", json=address("Parents"), headers=headers)

    response = client.delete(f"/api/addresses/{home['id']}", headers=headers)

    assert response.status_code == 200
    assert defaults(db, user.id) == ["Office"]


def test_deleting_last_address(client, db, customer):
    user, headers = customer
    home = client.post("/api/addresses", json=address("Home"), headers=headers).json()

    assert client.delete(f"/api/addresses/{home['id']}", headers=headers).status_code == 200
    assert db.query(Address).filter(Address.user_id == user.id).count() == 0


def test_addresses_are_private(client, db, customer):
    _, headers = customer
    home = client.post("/api/addresses", json=address("Home"), headers=headers).json()
    other = bearer(make_user(db, email="other@example.com"))

    assert client.put(f"/api/addresses/{home['id']}/default", headers=other).status_code == 404
    assert client.delete(f"/api/addresses/{home['id']}", headers=other).status_code == 404
    assert client.get("/api/addresses", headers=other).json() == []
