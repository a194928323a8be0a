from conftest import ADMIN, MANAGER, MEMBER, OTHER_MANAGER, OTHER_MEMBER, auth


def register(client, event_id, email=MEMBER, **extra):
    return client.post("/event-registrations", json={"eventId": event_id, **extra}, headers=auth(email))


def test_register_copies_club_and_lists_for_user(client, make_club, make_event):
    club_id = make_club("Chess Circle")
    event_id = make_event(club_id, title="Blitz Night")

    resp = register(client, event_id)
    assert resp.status_code == 201

    mine = client.get(f"/event-registrations/user/{MEMBER}", headers=auth(MEMBER)).json()
    assert len(mine) == 1
    assert mine[0]["clubId"] == club_id
    assert mine[0]["eventName"] == "Blitz Night"
    assert mine[0]["clubName"] == "Chess Circle"
    assert mine[0]["status"] == "registered"


def test_registration_requires_identity(client, make_club, make_event):
    event_id = make_event(make_club())
    assert client.post("/event-registrations", json={"eventId": event_id}).status_code == 401
    assert register(client, "missing").status_code == 404


def test_capacity_is_enforced(client, make_club, make_event):
    event_id = make_event(make_club(), maxAttendees=1)
    assert register(client, event_id).status_code == 201

    full = register(client, event_id, OTHER_MEMBER)
    assert full.status_code == 400
    assert full.json() == {"error": "Maximum attendees limit reached for this event"}


def test_duplicate_registration_conflicts(client, make_club, make_event):
    event_id = make_event(make_club())
    assert register(client, event_id).status_code == 201

    again = register(client, event_id)
    assert again.status_code == 409
    assert again.json() == {"error": "User already registered for this event"}


def test_cancel_frees_seat_and_allows_reregistration(client, make_club, make_event):
    event_id = make_event(make_club(), maxAttendees=1)
    registration_id = register(client, event_id).json()["registrationId"]

    cancelled = client.patch(
        f"/event-registrations/{registration_id}/status", json={"status": "cancelled"}, headers=auth(MEMBER)
    )
    assert cancelled.status_code == 200

    assert register(client, event_id, OTHER_MEMBER).status_code == 201

    back = client.patch(
        f"/event-registrations/{registration_id}/status", json={"status": "registered"}, headers=auth(MEMBER)
    )
    assert back.status_code == 400

    roster = client.get(f"/event-registrations/event/{event_id}", headers=auth(MANAGER)).json()
    assert {(r["userEmail"], r["status"]) for r in roster} == {(MEMBER, "cancelled"), (OTHER_MEMBER, "registered")}


def test_reregister_after_cancel_keeps_history(client, make_club, make_event):
    event_id = make_event(make_club())
    registration_id = register(client, event_id).json()["registrationId"]
    client.patch(f"/event-registrations/{registration_id}/status", json={"status": "cancelled"}, headers=auth(MEMBER))

    assert register(client, event_id).status_code == 201
    history = client.get(f"/event-registrations/user/{MEMBER}", headers=auth(MEMBER)).json()
    assert sorted(r["status"] for r in history) == ["cancelled", "registered"]


def test_registration_permissions(client, make_club, make_event):
    club_id = make_club()
    event_id = make_event(club_id)
    registration_id = register(client, event_id).json()["registrationId"]

    on_behalf = register(client, event_id, OTHER_MEMBER, userEmail=MEMBER)
    assert on_behalf.status_code == 403
    assert register(client, event_id, MANAGER, userEmail=OTHER_MEMBER).status_code == 201

    assert client.get(f"/event-registrations/user/{MEMBER}", headers=auth(OTHER_MEMBER)).status_code == 403
    assert client.get(f"/event-registrations/event/{event_id}", headers=auth(OTHER_MANAGER)).status_code == 403

    by_club = client.get(f"/event-registrations/club/{club_id}", headers=auth(MANAGER)).json()
    assert {r["userEmail"] for r in by_club} == {MEMBER, OTHER_MEMBER}
    assert all(r["eventName"] == "Open Night" for r in by_club)

    stranger = client.patch(
        f"/event-registrations/{registration_id}/status", json={"status": "cancelled"}, headers=auth(OTHER_MEMBER)
    )
    assert stranger.status_code == 403

    assert client.delete(f"/event-registrations/{registration_id}", headers=auth(OTHER_MANAGER)).status_code == 403
    assert client.delete(f"/event-registrations/{registration_id}", headers=auth(ADMIN)).status_code == 200
    assert client.delete(f"/event-registrations/{registration_id}", headers=auth(ADMIN)).status_code == 404


def test_reactivating_cancelled_registration_conflicts(client, make_club, make_event):
    event_id = make_event(make_club())
    first = register(client, event_id).json()["registrationId"]
    client.patch(f"/event-registrations/{first}/status", json={"status": "cancelled"}, headers=auth(MEMBER))
    assert register(client, event_id).status_code == 201

    resp = client.patch(f"/event-registrations/{first}/status", json={"status": "registered"}, headers=auth(MEMBER))
    assert resp.status_code == 409
    assert resp.json() == {"error": "User already registered for this event"}
