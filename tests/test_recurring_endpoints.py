def make_template(client, headers, category_id, **overrides):
    payload = {
        "amount": 15.0,
        "description": "Streaming",
        "category_id": category_id,
        "frequency": "monthly",
        "next_date": "2024-07-01",
        **overrides,
    }
    res = client.post("/api/recurring", json=payload, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def test_create_recurring_expense(client, headers, create_category):
    cat_id = create_category("Subscriptions", 30)
    body = make_template(client, headers, cat_id)

    assert body["frequency"] == "monthly"
    assert body["next_date"] == "2024-07-01"
    assert body["category_name"] == "Subscriptions"


def test_list_recurring_ordered_by_next_date(client, headers, create_category):
    cat_id = create_category()
    make_template(client, headers, cat_id, description="Gym", next_date="2024-08-01", frequency="yearly")
    make_template(client, headers, cat_id, description="Milk", next_date="2024-06-14", frequency="daily")
    make_template(client, headers, cat_id, description="Rent", next_date="2024-07-01")

    rows = client.get("/api/recurring", headers=headers).json()
    assert [r["description"] for r in rows] == ["Milk", "Rent", "Gym"]


def test_recurring_templates_do_not_create_expenses(client, headers, create_category):
    make_template(client, headers, create_category(), next_date="2024-06-01")
    assert client.get("/api/expenses", headers=headers).json() == []


def test_recurring_rejects_unknown_frequency(client, headers, create_category):
    res = client.post(
        "/api/recurring",
        json={"amount": 1, "category_id": create_category(), "frequency": "hourly", "next_date": "2024-07-01"},
        headers=headers,
    )
    assert res.status_code == 422


def test_update_recurring_expense(client, headers, create_category):
    cat_id = create_category()
    template = make_template(client, headers, cat_id)

    res = client.patch(
        f"/api/recurring/{template['id']}",
        json={"frequency": "weekly", "next_date": "2024-06-20", "amount": 4.5},
        headers=headers,
    )
    assert res.status_code == 200
    body = res.json()
    assert body["frequency"] == "weekly"
    assert body["next_date"] == "2024-06-20"
    assert body["amount"] == 4.5


def test_delete_recurring_expense(client, headers, create_category):
    template = make_template(client, headers, create_category())

    assert client.delete(f"/api/recurring/{template['id']}", headers=headers).status_code == 204
    assert client.get("/api/recurring", headers=headers).json() == []
    assert client.delete(f"/api/recurring/{template['id']}", headers=headers).status_code == 404
