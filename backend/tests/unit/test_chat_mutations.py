import asyncio

import pytest

from conftest import ADMIN_ID, CUSTOMER_ID, FakeTransport, make_conversation, make_message

from storefront_chat.domain.chat.cache import MessageCache
from storefront_chat.domain.chat.errors import NetworkOrServerFailure, ValidationFailure
from storefront_chat.domain.chat.models import Actor, is_pending_handle
from storefront_chat.domain.chat.mutations import ChatMutations
from storefront_chat.domain.chat.notifications import NotificationCenter
from storefront_chat.domain.chat.store import ActiveConversation, ConversationStore


def _build(transport: FakeTransport, actor: Actor, *conversations, archived=()):
    cache = MessageCache()
    store = ConversationStore(cache)
    store.replace_all(list(conversations))
    archived_store = ConversationStore(cache, name="archived")
    archived_store.replace_all(list(archived))
    active = ActiveConversation()
    notifications = NotificationCenter()
    mutations = ChatMutations(
        transport,
        actor,
        store=store,
        archived=archived_store,
        cache=cache,
        active=active,
        notifications=notifications,
        delete_timeout=0.05,
    )
    return mutations, store, archived_store, active, notifications, cache


def _history():
    return [make_message(501, 42, text="Hello", offset=60)]


@pytest.mark.asyncio
async def test_send_message_replaces_pending_entry_with_server_message():
    transport = FakeTransport(user_id=ADMIN_ID, is_admin=True)
    gate = asyncio.Event()
    transport.gates["send_message"] = gate
    mutations, store, _, _, _, cache = _build(
        transport, Actor(ADMIN_ID, is_admin=True), make_conversation(42, messages=_history())
    )

    task = asyncio.create_task(mutations.send_message(42, "We'll look into it"))
    await asyncio.sleep(0)
    speculative = store.get(42).messages[-1]
    assert speculative.id is None
    assert speculative.is_admin is True
    assert is_pending_handle(speculative.client_id)
    assert store.get(42).latest_message == "We'll look into it"

    gate.set()
    confirmed = await task
    assert confirmed.id == 900
    assert store.get(42).message_ids() == [501, 900]
    assert [m.id for m in cache.get(42)] == [501, 900]
    assert mutations.in_flight == 0


@pytest.mark.asyncio
async def test_send_message_failure_restores_prior_state():
    transport = FakeTransport()
    transport.failures["send_message"] = NetworkOrServerFailure("boom", status_code=500)
    mutations, store, _, _, notifications, _ = _build(
        transport, Actor(CUSTOMER_ID), make_conversation(42, messages=_history())
    )
    before = store.get(42).copy()

    with pytest.raises(NetworkOrServerFailure):
        await mutations.send_message(42, "second")

    after = store.get(42)
    assert after.messages == before.messages
    assert after.latest_message == before.latest_message
    assert after.latest_message_at == before.latest_message_at
    assert after.updated_at == before.updated_at
    assert not any(m.is_pending for m in after.messages)
    assert len(notifications.errors()) == 1
    assert notifications.latest().description == "Failed to send message"


@pytest.mark.asyncio
async def test_duplicate_send_while_in_flight_is_ignored():
    transport = FakeTransport()
    gate = asyncio.Event()
    transport.gates["send_message"] = gate
    mutations, store, _, _, _, _ = _build(transport, Actor(CUSTOMER_ID), make_conversation(42))

    first = asyncio.create_task(mutations.send_message(42, "same"))
    await asyncio.sleep(0)
    assert await mutations.send_message(42, "same") is None
    other = asyncio.create_task(mutations.send_message(42, "different"))
    await asyncio.sleep(0)
    gate.set()
    await first
    await other
    assert len(transport.called("send_message")) == 2
    assert [m.message for m in store.get(42).messages] == ["same", "different"]


@pytest.mark.asyncio
async def test_send_validation_and_stale_reference():
    transport = FakeTransport()
    mutations, store, _, _, notifications, _ = _build(transport, Actor(CUSTOMER_ID), make_conversation(42))

    with pytest.raises(ValidationFailure):
        await mutations.send_message(42, "   ")
    assert await mutations.send_message(99, "hello?") is None
    assert transport.calls == []
    assert store.get(42).messages == []
    assert notifications.items == []


@pytest.mark.asyncio
async def test_create_conversation_lands_at_front():
    transport = FakeTransport()
    mutations, store, _, _, notifications, cache = _build(transport, Actor(CUSTOMER_ID), make_conversation(7))

    conversation = await mutations.create_conversation("Billing question", "Hello")

    assert conversation.id == 42
    assert store.ids() == [42, 7]
    assert store.get(42).latest_message == "Hello"
    assert store.get(42).message_ids() == [501]
    assert [m.id for m in cache.get(42)] == [501]
    assert notifications.latest().title == "Conversation started"


@pytest.mark.asyncio
async def test_create_conversation_failure_removes_speculative_entry():
    transport = FakeTransport()
    transport.failures["create_conversation"] = NetworkOrServerFailure("down")
    mutations, store, _, _, notifications, _ = _build(transport, Actor(CUSTOMER_ID), make_conversation(7))

    with pytest.raises(NetworkOrServerFailure):
        await mutations.create_conversation("Billing question", "Hello", "high")
    assert store.ids() == [7]
    assert len(store) == 1
    assert len(notifications.errors()) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "subject, message, priority",
    [("", "Hello", "medium"), ("Subject", " ", "medium"), ("Subject", "Hello", "whenever")],
)
async def test_create_conversation_validation(subject, message, priority):
    transport = FakeTransport()
    mutations, store, _, _, _, _ = _build(transport, Actor(CUSTOMER_ID))
    with pytest.raises(ValidationFailure):
        await mutations.create_conversation(subject, message, priority)
    assert len(store) == 0
    assert transport.calls == []


@pytest.mark.asyncio
async def test_change_status_applies_and_rolls_back():
    transport = FakeTransport(user_id=ADMIN_ID, is_admin=True)
    mutations, store, _, _, notifications, _ = _build(
        transport, Actor(ADMIN_ID, is_admin=True), make_conversation(42, messages=_history())
    )

    await mutations.change_status(42, "closed")
    assert store.get(42).status == "closed"

    transport.failures["update_conversation"] = NetworkOrServerFailure("nope")
    with pytest.raises(NetworkOrServerFailure):
        await mutations.change_priority(42, "urgent")
    assert store.get(42).priority == "medium"
    assert store.get(42).message_ids() == [501]
    assert len(notifications.errors()) == 1

    with pytest.raises(ValidationFailure):
        await mutations.change_status(42, "archived")


@pytest.mark.asyncio
async def test_change_status_reconciles_with_server_value():
    transport = FakeTransport(user_id=ADMIN_ID, is_admin=True)
    transport.server_overrides["status"] = "pending"
    mutations, store, _, _, _, _ = _build(
        transport, Actor(ADMIN_ID, is_admin=True), make_conversation(42, messages=_history())
    )
    await mutations.change_status(42, "closed")
    assert store.get(42).status == "pending"
    assert store.get(42).message_ids() == [501]


@pytest.mark.asyncio
async def test_archive_then_unarchive_restores_conversation():
    transport = FakeTransport(user_id=ADMIN_ID, is_admin=True)
    mutations, store, archived, _, _, _ = _build(
        transport,
        Actor(ADMIN_ID, is_admin=True),
        make_conversation(42, messages=_history(), unread_count=2),
        make_conversation(43),
    )
    before = store.get(42).copy()

    await mutations.archive_conversation(42)
    assert store.ids() == [43]
    assert archived.ids() == [42]
    assert archived.get(42).deleted_by_admin is True

    await mutations.unarchive_conversation(42)
    assert 42 not in archived
    assert store.get(42) == before
    assert transport.called("update_conversation")[-1][2] == {"deleted_by_admin": False, "deleted_at": None}


@pytest.mark.asyncio
async def test_archive_failure_moves_conversation_back():
    transport = FakeTransport(user_id=ADMIN_ID, is_admin=True)
    transport.failures["delete_conversation"] = NetworkOrServerFailure("fail")
    mutations, store, archived, active, notifications, _ = _build(
        transport, Actor(ADMIN_ID, is_admin=True), make_conversation(41), make_conversation(42), make_conversation(43)
    )
    active.set(42)

    with pytest.raises(NetworkOrServerFailure):
        await mutations.request_delete(42, "admin_archive")

    assert store.ids() == [41, 42, 43]
    assert store.get(42).deleted_by_admin is False
    assert store.get(42).deleted_at is None
    assert len(archived) == 0
    assert active.get() == 42
    assert [n.description for n in notifications.errors()] == ["Failed to archive conversation"]


@pytest.mark.asyncio
async def test_unarchive_failure_returns_conversation_to_archive():
    transport = FakeTransport(user_id=ADMIN_ID, is_admin=True)
    transport.failures["update_conversation"] = NetworkOrServerFailure("fail")
    hidden = make_conversation(42)
    hidden.deleted_by_admin = True
    mutations, store, archived, _, _, _ = _build(transport, Actor(ADMIN_ID, is_admin=True), archived=[hidden])

    with pytest.raises(NetworkOrServerFailure):
        await mutations.unarchive_conversation(42)
    assert len(store) == 0
    assert archived.get(42).deleted_by_admin is True


@pytest.mark.asyncio
async def test_customer_hide_keeps_unread_for_rollback():
    transport = FakeTransport()
    transport.failures["delete_conversation"] = NetworkOrServerFailure("fail")
    mutations, store, archived, _, _, _ = _build(
        transport, Actor(CUSTOMER_ID), make_conversation(42, unread_count=3)
    )

    with pytest.raises(NetworkOrServerFailure):
        await mutations.request_delete(42, "user_hide")
    assert store.get(42).unread_count == 3
    assert store.get(42).deleted_by_user is False

    transport.failures.clear()
    hidden = await mutations.request_delete(42, "user_hide")
    assert hidden.deleted_by_user is True
    assert len(store) == 0
    assert len(archived) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "is_admin, delete_type",
    [(False, "permanent"), (False, "admin_archive"), (True, "user_hide"), (True, "shred")],
)
async def test_delete_types_are_role_scoped(is_admin, delete_type):
    transport = FakeTransport()
    mutations, store, _, _, _, _ = _build(transport, Actor("someone", is_admin=is_admin), make_conversation(42))
    with pytest.raises(ValidationFailure):
        await mutations.request_delete(42, delete_type)
    assert store.ids() == [42]


@pytest.mark.asyncio
async def test_permanent_delete_waits_for_confirmation():
    transport = FakeTransport(user_id=ADMIN_ID, is_admin=True)
    mutations, store, _, active, _, _ = _build(transport, Actor(ADMIN_ID, is_admin=True), make_conversation(42))
    active.set(42)

    pending = await mutations.request_delete(42, "permanent")
    assert pending.conversation_id == 42
    assert store.ids() == [42]
    assert transport.called("delete_conversation") == []

    assert await mutations.confirm_delete(42) is True
    assert len(store) == 0
    assert active.get() is None
    assert transport.called("delete_conversation") == [("delete_conversation", 42, "permanent")]


@pytest.mark.asyncio
async def test_permanent_delete_failure_restores_position_and_pointer():
    transport = FakeTransport(user_id=ADMIN_ID, is_admin=True)
    transport.failures["delete_conversation"] = NetworkOrServerFailure("fail")
    mutations, store, _, active, _, _ = _build(
        transport, Actor(ADMIN_ID, is_admin=True), make_conversation(41), make_conversation(42), make_conversation(43)
    )
    active.set(42)
    mutations.pending_deletes.request(42)

    with pytest.raises(NetworkOrServerFailure):
        await mutations.confirm_delete(42)
    assert store.ids() == [41, 42, 43]
    assert active.get() == 42


@pytest.mark.asyncio
async def test_permanent_delete_reaches_archived_conversations():
    transport = FakeTransport(user_id=ADMIN_ID, is_admin=True)
    mutations, _, archived, _, _, _ = _build(
        transport, Actor(ADMIN_ID, is_admin=True), archived=[make_conversation(42)]
    )
    await mutations.request_delete(42, "permanent")
    await mutations.confirm_delete(42)
    assert len(archived) == 0
