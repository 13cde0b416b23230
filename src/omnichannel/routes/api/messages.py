"""Reply, delete and capability routes for the inbox."""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from omnichannel.models import ReplyOptions
from omnichannel.routes.api.context import CallerContext, require_caller, result_response
from omnichannel.runtime import Runtime, get_runtime

router = APIRouter(tags=["api-messages"])


class ReplyInput(BaseModel):
    content: str = Field(min_length=1, max_length=10000)
    original_message_id: str = Field(alias="originalMessageId", min_length=1)
    original_content: str = Field(alias="originalContent", default="")
    original_sender: str = Field(alias="originalSender", default="")
    quoted_message: dict[str, Any] | None = Field(alias="quotedMessage", default=None)


@router.post("/conversations/{conversation_id}/reply")
async def reply(
    conversation_id: str,
    body: ReplyInput,
    ctx: CallerContext = Depends(require_caller),  # noqa: B008
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> JSONResponse:
    result = await runtime.manager.send_reply(
        conversation_id,
        body.content,
        ReplyOptions(
            original_message_id=body.original_message_id,
            original_content=body.original_content,
            original_sender=body.original_sender,
            quoted_message=body.quoted_message,
        ),
        ctx.user_id,
        ctx.company_id,
    )
    return result_response(result)


@router.delete("/messages/{message_id}")
async def delete_message(
    message_id: str,
    ctx: CallerContext = Depends(require_caller),  # noqa: B008
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> JSONResponse:
    result = await runtime.manager.delete_message(message_id, ctx.user_id, ctx.company_id)
    return result_response(result)


@router.get("/channels/{channel_type}/capabilities")
async def capabilities(
    channel_type: str,
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> dict[str, object]:
    caps = runtime.manager.get_capabilities(channel_type)
    return {
        "channelType": channel_type,
        "supportsReply": caps.supports_reply,
        "supportsDelete": caps.supports_delete,
        "supportsQuotedMessages": caps.supports_quoted_messages,
        "replyFormat": caps.reply_format,
        "deleteTimeLimit": caps.delete_time_limit,
    }
