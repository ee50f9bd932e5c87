from marketplace.models import ConversationParticipant
from marketplace.services.messaging import ConversationService


def open_conversation(client, auth_headers, user="brand-1", other="creator-1"):
    response = client.post("/conversations", json={"participantId": other}, headers=auth_headers(user))
    assert response.status_code == 201
    return response.json()["id"]


def test_open_is_idempotent_per_pair(client, auth_headers):
    first = open_conversation(client, auth_headers)
    second = open_conversation(client, auth_headers, user="creator-1", other="brand-1")
    assert first == second


def test_cannot_open_conversation_with_self(client, auth_headers):
    response = client.post("/conversations", json={"participantId": "brand-1"}, headers=auth_headers("brand-1"))
    assert response.status_code == 400


def test_message_increments_unread_for_others_only(client, auth_headers):
    conversation_id = open_conversation(client, auth_headers)

    for text in ("hello", "are you free next week?"):
        response = client.post(
            f"/conversations/{conversation_id}/messages",
            json={"text": text},
            headers=auth_headers("brand-1"),
        )
        assert response.status_code == 201

    creator_view = client.get("/conversations", headers=auth_headers("creator-1")).json()
    brand_view = client.get("/conversations", headers=auth_headers("brand-1")).json()
    assert creator_view[0]["unreadCount"] == 2
    assert creator_view[0]["lastMessage"] == "are you free next week?"
    assert brand_view[0]["unreadCount"] == 0

    read = client.post(f"/conversations/{conversation_id}/read", headers=auth_headers("creator-1"))
    assert read.status_code == 200
    assert read.json()["unreadCount"] == 0


def test_outsider_cannot_post(client, auth_headers):
    conversation_id = open_conversation(client, auth_headers)
    response = client.post(
        f"/conversations/{conversation_id}/messages",
        json={"text": "hi"},
        headers=auth_headers("stranger"),
    )
    assert response.status_code == 403


def test_listing_only_returns_own_threads(client, db, auth_headers):
    ours = open_conversation(client, auth_headers)
    open_conversation(client, auth_headers, user="brand-2", other="creator-2")
    open_conversation(client, auth_headers, user="brand-2", other="creator-1")

    brand_view = client.get("/conversations", headers=auth_headers("brand-1")).json()
    assert [c["id"] for c in brand_view] == [ours]

    service = ConversationService(db)
    assert len(service.list_for_user("creator-1")) == 2
    assert service.list_for_user("nobody") == []
    assert db.query(ConversationParticipant).filter_by(user_id="creator-1").count() == 2
