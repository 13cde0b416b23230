"""Hand-off of inbound messages to the flow automation engine."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from omnichannel.models import ChannelConnection, Contact, Conversation, Message

logger = logging.getLogger(__name__)


@runtime_checkable
class FlowExecutor(Protocol):
    async def process_incoming(
        self,
        message: Message,
        conversation: Conversation,
        contact: Contact | None,
        connection: ChannelConnection,
    ) -> None: ...


async def hand_off(
    executor: FlowExecutor | None,
    message: Message,
    conversation: Conversation,
    contact: Contact | None,
    connection: ChannelConnection,
) -> str | None:
    """Run the flow executor; return a warning string instead of raising."""
    if executor is None or conversation.bot_disabled:
        return None
    try:
        await executor.process_incoming(message, conversation, contact, connection)
    except Exception as exc:
        logger.exception("Flow executor failed for message %s", message.id)
        return f"flow executor failed: {exc}"
    return None
