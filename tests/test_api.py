"""API endpoint tests."""

from datetime import UTC, datetime, timedelta

from feedboard.models import DietEntry


def _create_horse(client, board_id, name="Thunder", **fields) -> dict:
    response = client.post(f"/api/boards/{board_id}/horses", json={"name": name, **fields})
    assert response.status_code == 201
    return response.json()["data"]


def _create_feed(client, board_id, name="Chaff", **fields) -> dict:
    response = client.post(f"/api/boards/{board_id}/feeds", json={"name": name, **fields})
    assert response.status_code == 201
    return response.json()["data"]


def test_health_check(client):
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["push"]["clients"] == 0
    assert "override_sweeps" in body["scheduler"]


# Boards


def test_create_board(client):
    """Test creating a board."""
    response = client.post("/api/boards", json={"timezone": "Europe/London"})
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["timezone"] == "Europe/London"
    assert body["data"]["time_mode"] == "AUTO"
    assert len(body["data"]["pair_code"]) == 6
    assert body["data"]["id"].startswith("b_")


def test_create_board_unknown_timezone(client):
    """Unknown timezones are rejected with an error envelope."""
    response = client.post("/api/boards", json={"timezone": "Mars/Olympus"})
    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert "Unknown timezone" in body["error"]


def test_get_board_not_found(client):
    """Test getting a board that does not exist."""
    response = client.get("/api/boards/b_missing")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Board not found"}


def test_update_board(client, board_id):
    """Test updating display settings."""
    response = client.patch(f"/api/boards/{board_id}", json={"zoom_level": 3, "current_page": 1})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["zoom_level"] == 3
    assert data["current_page"] == 1
    assert data["timezone"] == "Australia/Sydney"


def test_update_board_invalid_zoom(client, board_id):
    """Zoom level is limited to 1-3."""
    response = client.patch(f"/api/boards/{board_id}", json={"zoom_level": 5})
    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert "zoom_level" in body["error"]


def test_snapshot(client, board_id):
    """Test reading the complete board state."""
    horse = _create_horse(client, board_id)
    feed = _create_feed(client, board_id)
    client.put("/api/diet", json={"horse_id": horse["id"], "feed_id": feed["id"], "am_amount": 1})

    response = client.get(f"/api/boards/{board_id}/snapshot")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["board"]["id"] == board_id
    assert [h["name"] for h in data["horses"]] == ["Thunder"]
    assert [f["name"] for f in data["feeds"]] == ["Chaff"]
    assert data["diet_entries"][0]["am_amount"] == 1


def test_snapshot_not_found(client):
    response = client.get("/api/boards/b_missing/snapshot")
    assert response.status_code == 404


def test_events_not_found(client):
    """The push channel refuses unknown boards before streaming."""
    response = client.get("/api/boards/b_missing/events")
    assert response.status_code == 404
    assert response.json()["success"] is False


# Time mode


def test_set_time_mode_default_expiry(client, board_id):
    """An override without expiry lasts the configured duration."""
    before = datetime.now(UTC)
    response = client.put(f"/api/boards/{board_id}/time-mode", json={"time_mode": "AM"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["time_mode"] == "AM"

    override_until = datetime.fromisoformat(data["override_until"])
    expected = before + timedelta(minutes=60)
    assert abs((override_until - expected).total_seconds()) < 30


def test_get_time_mode_reports_effective_mode(client, board_id):
    client.put(f"/api/boards/{board_id}/time-mode", json={"time_mode": "PM"})

    response = client.get(f"/api/boards/{board_id}/time-mode")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["time_mode"] == "PM"
    assert data["effective_time_mode"] == "PM"
    assert data["override_until"] is not None


def test_clear_time_mode(client, board_id):
    client.put(f"/api/boards/{board_id}/time-mode", json={"time_mode": "AM"})

    response = client.delete(f"/api/boards/{board_id}/time-mode")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["time_mode"] == "AUTO"
    assert data["override_until"] is None


def test_set_time_mode_auto_clears_override(client, board_id):
    client.put(f"/api/boards/{board_id}/time-mode", json={"time_mode": "AM"})

    data = client.put(f"/api/boards/{board_id}/time-mode", json={"time_mode": "AUTO"}).json()["data"]
    assert data["time_mode"] == "AUTO"
    assert data["override_until"] is None


# Pairing


def test_pair(client, board_id):
    """Test resolving a pairing code."""
    code = client.get(f"/api/boards/{board_id}").json()["data"]["pair_code"]

    response = client.post("/api/pair", json={"code": code})
    assert response.status_code == 200
    assert response.json()["data"] == {"board_id": board_id}


def test_pair_invalid_code(client, board_id):
    code = client.get(f"/api/boards/{board_id}").json()["data"]["pair_code"]
    wrong = f"{(int(code) + 1) % 1_000_000:06d}"

    response = client.post("/api/pair", json={"code": wrong})
    assert response.status_code == 404
    assert response.json()["error"] == "Invalid pairing code"


def test_pair_malformed_code(client):
    response = client.post("/api/pair", json={"code": "12ab"})
    assert response.status_code == 422


# Horses


def test_horse_crud(client, board_id):
    """Test creating, listing, updating and deleting a horse."""
    horse = _create_horse(client, board_id, "  Storm  ")
    assert horse["name"] == "Storm"
    assert horse["archived"] is False

    response = client.patch(f"/api/horses/{horse['id']}", json={"name": "Stormy", "archived": True})
    assert response.status_code == 200
    assert response.json()["data"]["archived"] is True

    horses = client.get(f"/api/boards/{board_id}/horses").json()["data"]
    assert [h["name"] for h in horses] == ["Stormy"]

    assert client.delete(f"/api/horses/{horse['id']}").status_code == 200
    assert client.get(f"/api/boards/{board_id}/horses").json()["data"] == []
    assert client.delete(f"/api/horses/{horse['id']}").status_code == 404


def test_clearing_note_clears_expiry(client, board_id):
    expiry = (datetime.now(UTC) + timedelta(hours=2)).isoformat()
    horse = _create_horse(client, board_id, note="Vet visit", note_expiry=expiry)
    assert horse["note_expiry"] is not None

    data = client.patch(f"/api/horses/{horse['id']}", json={"note": None}).json()["data"]
    assert data["note"] is None
    assert data["note_expiry"] is None


def test_create_horse_unknown_board(client):
    response = client.post("/api/boards/b_missing/horses", json={"name": "Ghost"})
    assert response.status_code == 404


def test_delete_horse_removes_its_diet(client, board_id, db):
    """Deleting a horse takes its diet entries with it."""
    horse = _create_horse(client, board_id)
    feed = _create_feed(client, board_id)
    client.put("/api/diet", json={"horse_id": horse["id"], "feed_id": feed["id"], "pm_amount": 2})

    client.delete(f"/api/horses/{horse['id']}")

    assert db.query(DietEntry).count() == 0
    assert client.get(f"/api/boards/{board_id}/diet").json()["data"] == []


# Feeds


def test_feed_crud(client, board_id):
    """Test creating, updating and deleting feeds."""
    chaff = _create_feed(client, board_id, "Chaff")
    oats = _create_feed(client, board_id, "Oats", unit="biscuit")
    assert oats["unit"] == "biscuit"

    response = client.patch(f"/api/feeds/{chaff['id']}", json={"stock_level": 4.5, "unit": "ml"})
    assert response.status_code == 200
    assert response.json()["data"]["stock_level"] == 4.5
    assert response.json()["data"]["unit"] == "ml"

    feeds = client.get(f"/api/boards/{board_id}/feeds").json()["data"]
    assert [f["name"] for f in feeds] == ["Chaff", "Oats"]

    assert client.delete(f"/api/feeds/{chaff['id']}").status_code == 200
    assert [f["name"] for f in client.get(f"/api/boards/{board_id}/feeds").json()["data"]] == ["Oats"]


def test_create_feed_invalid_unit(client, board_id):
    response = client.post(f"/api/boards/{board_id}/feeds", json={"name": "Oats", "unit": "bucket"})
    assert response.status_code == 422


# Diet


def test_diet_upsert_keeps_missing_fields(client, board_id):
    """Fields left out of the request keep their stored value."""
    horse = _create_horse(client, board_id)
    feed = _create_feed(client, board_id)
    key = {"horse_id": horse["id"], "feed_id": feed["id"]}

    first = client.put("/api/diet", json={**key, "am_amount": 1.5})
    assert first.status_code == 200
    assert first.json()["data"]["am_amount"] == 1.5
    assert first.json()["data"]["pm_amount"] is None

    second = client.put("/api/diet", json={**key, "pm_amount": 2})
    assert second.json()["data"]["am_amount"] == 1.5
    assert second.json()["data"]["pm_amount"] == 2


def test_diet_both_null_deletes_entry(client, board_id, db):
    horse = _create_horse(client, board_id)
    feed = _create_feed(client, board_id)
    key = {"horse_id": horse["id"], "feed_id": feed["id"]}
    client.put("/api/diet", json={**key, "am_amount": 1})

    response = client.put("/api/diet", json={**key, "am_amount": None})
    assert response.status_code == 200
    assert response.json()["data"] is None
    assert db.query(DietEntry).count() == 0


def test_diet_clearing_missing_entry(client, board_id, db):
    horse = _create_horse(client, board_id)
    feed = _create_feed(client, board_id)

    response = client.put(
        "/api/diet",
        json={"horse_id": horse["id"], "feed_id": feed["id"], "am_amount": None, "pm_amount": None},
    )
    assert response.status_code == 200
    assert response.json()["data"] is None
    assert db.query(DietEntry).count() == 0


def test_diet_requires_an_amount(client, board_id):
    horse = _create_horse(client, board_id)
    feed = _create_feed(client, board_id)

    response = client.put("/api/diet", json={"horse_id": horse["id"], "feed_id": feed["id"]})
    assert response.status_code == 400


def test_diet_rejects_negative_amount(client, board_id):
    horse = _create_horse(client, board_id)
    feed = _create_feed(client, board_id)

    response = client.put(
        "/api/diet", json={"horse_id": horse["id"], "feed_id": feed["id"], "am_amount": -1}
    )
    assert response.status_code == 422


def test_diet_rejects_cross_board_pair(client, board_id):
    """A horse cannot be fed from another board's feeds."""
    other_board = client.post("/api/boards", json={}).json()["data"]["id"]
    horse = _create_horse(client, board_id)
    feed = _create_feed(client, other_board)

    response = client.put(
        "/api/diet", json={"horse_id": horse["id"], "feed_id": feed["id"], "am_amount": 1}
    )
    assert response.status_code == 400
    assert "different boards" in response.json()["error"]


# Push


def test_subscriber_receives_snapshot_first(subscriber, board_id):
    events = subscriber.events
    assert len(events) == 1
    assert events[0].type == "full"
    assert events[0].data.board.id == board_id


def test_write_is_pushed_after_commit(client, board_id, subscriber):
    """A push following a write already carries the written value."""
    horse = _create_horse(client, board_id, "Thunder")

    client.patch(f"/api/horses/{horse['id']}", json={"name": "Lightning"})

    last = subscriber.events[-1]
    assert last.type == "full"
    assert [h.name for h in last.data.horses] == ["Lightning"]


def test_writes_to_other_boards_are_not_pushed(client, board_id, subscriber):
    other_board = client.post("/api/boards", json={}).json()["data"]["id"]

    _create_horse(client, other_board)

    assert len(subscriber.events) == 1


def test_time_mode_change_is_pushed(client, board_id, subscriber):
    client.put(f"/api/boards/{board_id}/time-mode", json={"time_mode": "PM"})

    assert subscriber.events[-1].data.board.time_mode == "PM"
