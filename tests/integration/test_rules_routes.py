"""
HTTP-level tests for /rules: validation errors, manual runs and condition
dry runs against a fake mailbox.
"""

NEWSLETTER_RULE = {
    "name": "Archive newsletters",
    "conditions": [{"field": "from", "operator": "contains", "value": "newsletter"}],
    "actions": [{"type": "archive"}],
}


def _newsletter_inbox(make_message):
    messages = [make_message(f"m{i}") for i in range(7)]
    messages += [make_message(f"n{i}", sender=f"newsletter{i}@shop.com") for i in range(3)]
    return messages


def test_create_and_list_rules(api_client):
    response = api_client.post(
        "/rules",
        json={**NEWSLETTER_RULE, "schedule": {"enabled": True, "frequency": "daily", "time": "09:00"}},
    )

    assert response.status_code == 201
    created = response.json()
    assert created["conditions"][0]["case_sensitive"] is False
    assert created["schedule"]["time"] == "09:00"

    listing = api_client.get("/rules").json()
    assert listing["total_count"] == 1


def test_create_rule_without_conditions_is_400(api_client):
    response = api_client.post("/rules", json={**NEWSLETTER_RULE, "conditions": []})

    assert response.status_code == 400
    assert response.json()["kind"] == "empty_conditions"


def test_create_rule_with_unknown_action_is_400(api_client):
    response = api_client.post("/rules", json={**NEWSLETTER_RULE, "actions": [{"type": "snooze"}]})

    assert response.status_code == 400
    assert response.json()["kind"] == "unknown_action_type"


def test_create_rule_with_malformed_schedule_time_is_422(api_client):
    response = api_client.post(
        "/rules",
        json={**NEWSLETTER_RULE, "schedule": {"enabled": True, "frequency": "daily", "time": "9am"}},
    )

    assert response.status_code == 422


def test_run_rule_archives_newsletters(api_client, provider, make_message):
    provider.messages = _newsletter_inbox(make_message)
    rule = api_client.post("/rules", json=NEWSLETTER_RULE).json()

    response = api_client.post(f"/rules/{rule['id']}/run", json={"max_emails": 50})

    assert response.status_code == 200
    body = response.json()
    assert body["emails_processed"] == 10
    assert body["emails_matched"] == 3
    assert body["actions_performed"] == 1
    assert body["success"] is True
    assert provider.calls_for("list_messages") == [("in:inbox", 50)]
    assert provider.calls_for("archive") == [(["n0", "n1", "n2"],)]

    history = api_client.get(f"/rules/{rule['id']}/executions").json()
    assert [record["id"] for record in history] == [body["id"]]


def test_run_rule_without_body_uses_default_batch(api_client, provider):
    rule = api_client.post("/rules", json=NEWSLETTER_RULE).json()

    response = api_client.post(f"/rules/{rule['id']}/run")

    assert response.status_code == 200
    assert provider.calls_for("list_messages") == [("in:inbox", 100)]


def test_run_inactive_rule_is_404(api_client):
    rule = api_client.post("/rules", json={**NEWSLETTER_RULE, "is_active": False}).json()

    response = api_client.post(f"/rules/{rule['id']}/run")

    assert response.status_code == 404
    assert response.json()["kind"] == "rule_not_found"


def test_delete_rule(api_client):
    rule = api_client.post("/rules", json=NEWSLETTER_RULE).json()

    assert api_client.delete(f"/rules/{rule['id']}").status_code == 204
    assert api_client.delete(f"/rules/{rule['id']}").status_code == 404


def test_condition_dry_run(api_client, provider, make_message):
    provider.messages = _newsletter_inbox(make_message)

    response = api_client.post(
        "/rules/test",
        json={"conditions": NEWSLETTER_RULE["conditions"], "max_emails": 25},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["total_emails"] == 10
    assert body["matching_emails"] == 3
    assert [item["id"] for item in body["preview"]] == ["n0", "n1", "n2"]
    assert provider.calls_for("archive") == []


def test_condition_dry_run_without_conditions_is_400(api_client):
    response = api_client.post("/rules/test", json={"conditions": []})

    assert response.status_code == 400
    assert response.json()["kind"] == "empty_conditions"
