import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from chatdesk.realtime.events import (
    ConversationSnapshot,
    MessagePayload,
    OwnershipPayload,
    conversation_channel,
)
from chatdesk.realtime.publisher import LocalEventPublisher
from chatdesk.realtime.subscription_manager import SubscriptionManager
from chatdesk.realtime.transport import ConnectionStatus, InMemoryTransport
from chatdesk.realtime.view import ConversationView
from chatdesk.services.errors import TransportDegradedWarning


async def drain():
    for _ in range(5):
        await asyncio.sleep(0)


def message_row(conversation_id, content="hello", offset_seconds=0):
    return SimpleNamespace(
        id=uuid4(),
        conversation_id=conversation_id,
        content=content,
        role="user",
        agent_id=None,
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=offset_seconds),
    )


def snapshot_for(conversation_id, rows):
    return ConversationSnapshot(
        conversation_id=conversation_id,
        messages=[MessagePayload.from_row(row) for row in rows],
        ownership=OwnershipPayload(
            conversation_id=conversation_id,
            state="bot_owned",
            changed_at=datetime.now(timezone.utc),
        ),
    )


class TestFanOut:
    @pytest.mark.asyncio
    async def test_subscribers_share_one_channel(self):
        transport = InMemoryTransport()
        manager = SubscriptionManager(transport)
        await manager.start()
        conversation_id = uuid4()
        widget, dashboard = [], []

        await manager.subscribe(conversation_id, on_message=widget.append, owner="widget")
        await manager.subscribe(conversation_id, on_message=dashboard.append, owner="dashboard")
        LocalEventPublisher(transport).message_appended(message_row(conversation_id))
        await drain()

        assert transport.channels == {conversation_channel(conversation_id)}
        assert len(widget) == 1
        assert len(dashboard) == 1
        assert widget[0].content == "hello"
        await manager.stop()

    @pytest.mark.asyncio
    async def test_subscribe_is_idempotent_per_owner(self):
        transport = InMemoryTransport()
        manager = SubscriptionManager(transport)
        await manager.start()
        conversation_id = uuid4()
        received = []

        await manager.subscribe(conversation_id, on_message=received.append, owner="tab-1")
        await manager.subscribe(conversation_id, on_message=received.append, owner="tab-1")
        LocalEventPublisher(transport).message_appended(message_row(conversation_id))
        await drain()

        assert manager.subscriber_count(conversation_id) == 1
        assert len(received) == 1
        await manager.stop()

    @pytest.mark.asyncio
    async def test_last_unsubscribe_releases_channel(self):
        transport = InMemoryTransport()
        manager = SubscriptionManager(transport)
        await manager.start()
        conversation_id = uuid4()

        first = await manager.subscribe(conversation_id, on_message=lambda m: None)
        second = await manager.subscribe(conversation_id, on_message=lambda m: None)
        await first()
        assert transport.channels == {conversation_channel(conversation_id)}

        await second()
        await second()
        assert transport.channels == set()
        assert manager.subscriber_count(conversation_id) == 0
        await manager.stop()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_affect_others(self):
        transport = InMemoryTransport()
        manager = SubscriptionManager(transport)
        await manager.start()
        conversation_id = uuid4()
        received = []

        def broken(message):
            raise RuntimeError("render failed")

        await manager.subscribe(conversation_id, on_message=broken, owner="broken")
        await manager.subscribe(conversation_id, on_message=received.append, owner="ok")
        LocalEventPublisher(transport).message_appended(message_row(conversation_id))
        await drain()

        assert len(received) == 1
        await manager.stop()

    @pytest.mark.asyncio
    async def test_async_handlers_are_awaited(self):
        transport = InMemoryTransport()
        manager = SubscriptionManager(transport)
        await manager.start()
        conversation_id = uuid4()
        handler = AsyncMock()

        await manager.subscribe(conversation_id, on_message=handler)
        LocalEventPublisher(transport).message_appended(message_row(conversation_id))
        await drain()

        handler.assert_awaited_once()
        await manager.stop()

    @pytest.mark.asyncio
    async def test_malformed_payload_is_dropped(self):
        transport = InMemoryTransport()
        manager = SubscriptionManager(transport)
        await manager.start()
        conversation_id = uuid4()
        received = []

        await manager.subscribe(conversation_id, on_message=received.append)
        transport.publish(conversation_channel(conversation_id), "{not json")
        await drain()

        assert received == []
        await manager.stop()

    @pytest.mark.asyncio
    async def test_agent_notifications(self):
        transport = InMemoryTransport()
        manager = SubscriptionManager(transport)
        await manager.start()
        agent_id = uuid4()
        received = []
        notification = SimpleNamespace(
            id=uuid4(),
            agent_id=agent_id,
            conversation_id=uuid4(),
            type="escalation",
            message="Customer conversation escalated",
            is_read=False,
            chatbot_name="Support Bot",
            created_at=datetime.now(timezone.utc),
        )

        await manager.subscribe_agent(agent_id, received.append)
        LocalEventPublisher(transport).notification_created(notification)
        await drain()

        assert [n.type for n in received] == ["escalation"]
        await manager.stop()


class TestReconciliation:
    @pytest.mark.asyncio
    async def test_reconnect_redelivers_snapshot(self):
        transport = InMemoryTransport()
        conversation_id = uuid4()
        rows = [message_row(conversation_id, "one", 0), message_row(conversation_id, "two", 1)]
        loader = AsyncMock(return_value=snapshot_for(conversation_id, rows))
        manager = SubscriptionManager(transport, snapshot_loader=loader, reconcile_interval_seconds=0)
        await manager.start()
        statuses = []
        manager.add_status_listener(statuses.append)
        messages, ownership = [], []

        await manager.subscribe(conversation_id, on_message=messages.append, on_ownership_change=ownership.append)
        with pytest.warns(TransportDegradedWarning):
            await transport._set_status(ConnectionStatus.DEGRADED)
        await transport._set_status(ConnectionStatus.CONNECTED)

        assert statuses == [ConnectionStatus.DEGRADED, ConnectionStatus.CONNECTED]
        assert [m.content for m in messages] == ["one", "two"]
        assert ownership[0].state == "bot_owned"
        loader.assert_awaited_once_with(conversation_id)
        await manager.stop()

    @pytest.mark.asyncio
    async def test_polls_while_degraded(self):
        transport = InMemoryTransport()
        conversation_id = uuid4()
        loader = AsyncMock(return_value=snapshot_for(conversation_id, []))
        manager = SubscriptionManager(transport, snapshot_loader=loader, reconcile_interval_seconds=0.01)
        await manager.start()

        await manager.subscribe(conversation_id, on_message=lambda m: None)
        with pytest.warns(TransportDegradedWarning):
            await transport._set_status(ConnectionStatus.DEGRADED)
        await asyncio.sleep(0.05)

        assert loader.await_count >= 1
        assert manager.status == ConnectionStatus.DEGRADED
        await manager.stop()

    @pytest.mark.asyncio
    async def test_no_polling_while_connected(self):
        transport = InMemoryTransport()
        loader = AsyncMock(return_value=None)
        manager = SubscriptionManager(transport, snapshot_loader=loader, reconcile_interval_seconds=0.01)
        await manager.start()

        await manager.subscribe(uuid4(), on_message=lambda m: None)
        await asyncio.sleep(0.05)

        assert loader.await_count == 0
        await manager.stop()

    @pytest.mark.asyncio
    async def test_duplicates_merge_in_view(self):
        transport = InMemoryTransport()
        conversation_id = uuid4()
        rows = [message_row(conversation_id, "one", 0)]
        loader = AsyncMock(return_value=snapshot_for(conversation_id, rows))
        manager = SubscriptionManager(transport, snapshot_loader=loader, reconcile_interval_seconds=0)
        await manager.start()
        view = ConversationView(conversation_id)

        await manager.subscribe(conversation_id, on_message=view.apply_message, on_ownership_change=view.apply_ownership)
        LocalEventPublisher(transport).message_appended(rows[0])
        await drain()
        await manager.reconcile(conversation_id)
        await manager.reconcile(conversation_id)

        assert [m.content for m in view.messages] == ["one"]
        await manager.stop()
