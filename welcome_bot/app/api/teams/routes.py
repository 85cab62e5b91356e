"""
Microsoft Teams Bot Framework messaging endpoint for the welcome bot.
Accepts activities posted by the Teams channel and dispatches conversationUpdate events.
"""
import logging
from json import JSONDecodeError
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from welcome_bot.app.errors import InvalidActivityError
from welcome_bot.app.models.events import ConversationEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["teams"])


class ActivityAck(BaseModel):
    """Body returned to the Bot Framework channel."""
    status: Optional[str] = None
    error: Optional[str] = None


def _ack(status_code: int = 200, **fields) -> JSONResponse:
    return JSONResponse(
        content=ActivityAck(**fields).model_dump(exclude_none=True),
        status_code=status_code
    )


@router.post("/messages")
async def messages_webhook(request: Request):
    """
    Bot Framework messaging endpoint.

    conversationUpdate activities are handled before responding; any other
    activity type is acknowledged and ignored.
    """
    try:
        body = await request.json()
    except (JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Rejected activity with invalid JSON body: {e}")
        return _ack(400, error="invalid_json")

    if not isinstance(body, dict):
        return _ack(400, error="invalid_activity")

    try:
        event = ConversationEvent.from_body(body)
    except InvalidActivityError as e:
        logger.warning(f"Rejected malformed activity: {e}")
        return _ack(400, error="invalid_activity")

    if not event.is_conversation_update:
        logger.debug(f"Ignoring {event.type} activity {event.id}")
        return _ack(status="ignored")

    logger.info(f"Received conversationUpdate activity {event.id}")
    handler = request.app.state.conversation_handler
    await handler.handle_conversation_update(event)

    return _ack(status="ok")
