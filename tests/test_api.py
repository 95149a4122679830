"""API-level tests for the Flask app."""

import pytest

from app import app


@pytest.fixture(autouse=True)
def env_setup(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_DB_PATH", str(tmp_path / "app.db"))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("STAFF_TOKEN", raising=False)
    monkeypatch.delenv("PUBLIC_BASE_URL", raising=False)
    yield


@pytest.fixture
def client():
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


@pytest.fixture
def bartender():
    # separate cookie jar for the staff side
    app.config["TESTING"] = True
    return app.test_client()


def register(
    client,
    email="sam@example.com",
    password="password123",
    name="Sam Rivera",
    sex="male",
    default_weight_lb=160,
    emergency_phone="555-0100",
):
    res = client.post(
        "/api/auth/register",
        json={
            "email": email,
            "password": password,
            "display_name": name,
            "sex": sex,
            "default_weight_lb": default_weight_lb,
            "emergency_phone": emergency_phone,
        },
    )
    assert res.status_code == 200
    return res.get_json()


def open_tab(bartender):
    res = bartender.post("/api/sessions")
    assert res.status_code == 200
    return res.get_json()


def join(client, token):
    res = client.post(f"/api/join/{token}")
    assert res.status_code == 200
    return res.get_json()["session"]


def test_healthz(client):
    res = client.get("/healthz")
    assert res.status_code == 200
    assert res.get_json() == {"ok": True}


def test_menu_lists_all_items(client):
    res = client.get("/api/menu")
    assert res.status_code == 200
    body = res.get_json()
    assert len(body["flat"]) == 18
    assert set(body["by_category"]) == {"Beer", "Wine", "Spirit", "Other"}
    vodka = next(item for item in body["flat"] if item["id"] == "vodka")
    assert (vodka["volume_ml"], vodka["abv"]) == (44, 45.0)


def test_register_login_logout(client):
    body = register(client)
    assert body["customer"]["weight_lb"] == 160
    assert client.get("/api/auth/me").get_json()["authenticated"] is True

    client.post("/api/auth/logout")
    assert client.get("/api/auth/me").get_json()["authenticated"] is False

    bad = client.post("/api/auth/login", json={"email": "sam@example.com", "password": "nope-nope"})
    assert bad.status_code == 401
    ok = client.post(
        "/api/auth/login",
        json={"email": "sam@example.com", "password": "password123", "redirect": "/customer"},
    )
    assert ok.status_code == 200
    assert ok.get_json()["redirect"] == "/customer"


def test_register_rejects_bad_profile(client):
    res = client.post(
        "/api/auth/register",
        json={"email": "a@b.co", "password": "password123", "sex": "male", "default_weight_lb": 20},
    )
    assert res.status_code == 400
    res = client.post(
        "/api/auth/register",
        json={"email": "a@b.co", "password": "password123", "sex": "other", "default_weight_lb": 150},
    )
    assert res.status_code == 400


def test_register_duplicate_email(client):
    register(client)
    res = client.post(
        "/api/auth/register",
        json={"email": "sam@example.com", "password": "password123", "sex": "male", "default_weight_lb": 150},
    )
    assert res.status_code == 409


def test_join_link_sends_visitor_to_sign_up(client, bartender):
    tab = open_tab(bartender)
    res = client.get(tab["join_path"])
    assert res.status_code == 302
    assert "/sign-up?redirect=%2Fcustomer%2Fjoin%2F" in res.headers["Location"]
    assert tab["session"]["join_token"] in res.headers["Location"]


def test_invalid_join_link(client):
    register(client)
    res = client.get("/customer/join/0000-0000")
    assert res.status_code == 404
    assert res.get_json()["status"] == "invalid"

    res = client.get("/customer/join/not-a-token")
    assert res.status_code == 404


def test_bartender_gets_join_url(bartender, monkeypatch):
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://bar.example/")
    tab = open_tab(bartender)
    token = tab["session"]["join_token"]
    assert tab["session"]["status"] == "pending"
    assert tab["join_url"] == f"https://bar.example/customer/join/{token}"


def test_full_tab_lifecycle(client, bartender):
    tab = open_tab(bartender)
    session_id = tab["session"]["id"]
    register(client)

    res = client.get(tab["join_path"])
    assert res.status_code == 302
    assert f"/customer?joined={session_id}" in res.headers["Location"]

    for menu_id in ("ale", "vodka"):
        res = bartender.post(f"/api/sessions/{session_id}/drinks", json={"menu_id": menu_id})
        assert res.status_code == 200

    view = client.get(f"/api/customer/session?joined={session_id}").get_json()["session"]
    assert view["status"] == "active"
    assert [d["name"] for d in view["drinks"]] == ["Ale", "Vodka"]
    assert view["context"]["drink_count"] == 2
    assert view["context"]["bac"] > 0

    active = bartender.get("/api/sessions/active").get_json()["items"]
    assert [item["id"] for item in active] == [session_id]

    res = client.post(f"/api/sessions/{session_id}/close")
    assert res.status_code == 409

    res = client.post(
        f"/api/sessions/{session_id}/chat",
        json={"messages": [{"role": "user", "content": "hey"}]},
    )
    assert res.status_code == 200
    chat = res.get_json()
    assert chat["source"] == "rules"
    assert chat["turn_id"] == 1
    assert chat["stale"] is False
    assert chat["reply"].startswith("Hey Sam!")

    res = client.post(f"/api/sessions/{session_id}/close")
    assert res.status_code == 200
    closed = res.get_json()["session"]
    assert closed["status"] == "ended"
    assert closed["ended_at"] is not None

    res = bartender.post(f"/api/sessions/{session_id}/drinks", json={"menu_id": "gin"})
    assert res.status_code == 409
    assert res.get_json()["error"] == "Session has ended"
    assert bartender.get("/api/sessions/active").get_json()["items"] == []

    friend = client.get("/api/friend/messages?contact=555-0100").get_json()
    assert [item["kind"] for item in friend["items"]] == ["session-ended"]


def test_pending_session_rejects_drinks(bartender):
    tab = open_tab(bartender)
    res = bartender.post(f"/api/sessions/{tab['session']['id']}/drinks", json={"menu_id": "ale"})
    assert res.status_code == 409
    res = bartender.post("/api/sessions/9999/drinks", json={"menu_id": "ale"})
    assert res.status_code == 404
    res = bartender.post(f"/api/sessions/{tab['session']['id']}/drinks", json={"menu_id": "mead"})
    assert res.status_code == 400


def test_custom_drink_validation(client, bartender):
    register(client)
    tab = open_tab(bartender)
    session_id = join(client, tab["session"]["join_token"])["id"]

    res = bartender.post(
        f"/api/sessions/{session_id}/drinks",
        json={"name": "House Punch", "volume_ml": 250, "abv": 12},
    )
    assert res.status_code == 200
    assert res.get_json()["drink"]["name"] == "House Punch"

    res = bartender.post(
        f"/api/sessions/{session_id}/drinks",
        json={"name": "Bucket", "volume_ml": 5000, "abv": 12},
    )
    assert res.status_code == 400


def test_second_customer_cannot_join_taken_tab(client, bartender):
    tab = open_tab(bartender)
    register(client)
    join(client, tab["session"]["join_token"])

    other = app.test_client()
    register(other, email="kim@example.com", name="Kim Park", sex="female", default_weight_lb=130)
    res = other.post(f"/api/join/{tab['session']['join_token']}")
    assert res.status_code == 404
    assert res.get_json()["error"] == "This session already has a customer."


def test_friend_gets_one_high_risk_alert(client, bartender):
    register(client, default_weight_lb=100, emergency_phone="555-0199")
    tab = open_tab(bartender)
    session_id = join(client, tab["session"]["join_token"])["id"]

    res = bartender.post(f"/api/sessions/{session_id}/drinks", json={"menu_id": "vodka"})
    assert res.get_json()["session"]["context"]["bac"] == pytest.approx(0.051, abs=0.001)
    friend = client.get("/api/friend/messages?contact=555-0199").get_json()
    assert friend["items"] == []

    res = bartender.post(f"/api/sessions/{session_id}/drinks", json={"menu_id": "vodka"})
    context = res.get_json()["session"]["context"]
    assert context["bac"] == pytest.approx(0.101, abs=0.001)
    assert context["risk_level"] == "danger"

    for _ in range(3):
        friend = client.get("/api/friend/messages?contact=555-0199").get_json()
    assert friend["contact_name"] == "Sam"
    assert [item["kind"] for item in friend["items"]] == ["high-risk"]
    assert "Sam" in friend["items"][0]["body"]
    assert "Rivera" not in friend["items"][0]["body"]


def test_friend_messages_requires_contact(client):
    assert client.get("/api/friend/messages").status_code == 400


def test_sms_endpoint(client):
    res = client.post("/api/sms", json={"to": "555-0100", "type": "high-risk"})
    assert res.status_code == 400
    assert res.get_json()["error"] == "Missing required fields"

    res = client.post(
        "/api/sms",
        json={"to": "555-0100", "type": "last-call", "customerName": "Sam"},
    )
    assert res.status_code == 400

    res = client.post(
        "/api/sms",
        json={"to": "555-0100", "type": "high-risk", "customerName": "Sam Rivera", "bac": "0.092%"},
    )
    assert res.status_code == 200
    body = res.get_json()
    assert body["sent"] is True
    assert "(0.092%)" in body["alert"]["body"]


def test_staff_token_guards_bartender_routes(bartender, monkeypatch):
    monkeypatch.setenv("STAFF_TOKEN", "bar-secret")
    assert bartender.post("/api/sessions").status_code == 403
    assert bartender.get("/api/sessions/active").status_code == 403

    res = bartender.post("/api/sessions", headers={"X-Staff-Token": "bar-secret"})
    assert res.status_code == 200
    session_id = res.get_json()["session"]["id"]
    assert bartender.get(f"/api/sessions/{session_id}").status_code == 401
    assert bartender.post(f"/api/sessions/{session_id}/end").status_code == 403


def test_stale_chat_turn_is_flagged(client, bartender):
    register(client)
    tab = open_tab(bartender)
    session_id = join(client, tab["session"]["join_token"])["id"]
    messages = [
        {"role": "assistant", "content": "Hey Sam!"},
        {"role": "user", "content": "can i drive?"},
    ]

    newer = client.post(f"/api/sessions/{session_id}/chat", json={"messages": messages, "turn_id": 5})
    assert newer.get_json()["stale"] is False

    older = client.post(f"/api/sessions/{session_id}/chat", json={"messages": messages, "turn_id": 3})
    body = older.get_json()
    assert body["turn_id"] == 3
    assert body["stale"] is True


def test_chat_rejects_bad_messages(client, bartender):
    register(client)
    tab = open_tab(bartender)
    session_id = join(client, tab["session"]["join_token"])["id"]
    res = client.post(f"/api/sessions/{session_id}/chat", json={"messages": []})
    assert res.status_code == 400


def test_staff_end_session(client, bartender):
    register(client)
    tab = open_tab(bartender)
    session_id = join(client, tab["session"]["join_token"])["id"]

    res = bartender.post(f"/api/sessions/{session_id}/end")
    assert res.status_code == 200
    assert res.get_json()["session"]["ended_at"] is not None
    assert client.get("/api/customer/session").get_json()["session"] is None
    assert bartender.post("/api/sessions/9999/end").status_code == 404


def test_change_feed_cursor(bartender):
    tab = open_tab(bartender)
    res = bartender.get("/api/changes?since=0")
    body = res.get_json()
    assert body["items"][-1]["session_id"] == tab["session"]["id"]
    assert body["cursor"] == body["items"][-1]["seq"]

    again = bartender.get(f"/api/changes?since={body['cursor']}").get_json()
    assert again == {"items": [], "cursor": body["cursor"]}


def test_session_view_returns_feed_cursor(client, bartender):
    register(client)
    tab = open_tab(bartender)
    session_id = join(client, tab["session"]["join_token"])["id"]
    cursor = client.get("/api/customer/session").get_json()["cursor"]

    bartender.post(f"/api/sessions/{session_id}/drinks", json={"menu_id": "vodka"})
    changes = client.get(f"/api/changes?since={cursor}&session_id={session_id}").get_json()["items"]
    assert [(c["table"], c["event"]) for c in changes] == [("drinks", "INSERT")]

    detail = client.get(f"/api/sessions/{session_id}").get_json()
    assert detail["cursor"] >= changes[-1]["seq"]
    assert detail["session"]["drinks"][0]["grams"] == pytest.approx(15.6)
