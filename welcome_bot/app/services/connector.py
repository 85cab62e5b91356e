"""
Bot Connector client used for proactive messaging.

Implements the three conversation operations the welcome flow needs against
the Teams service URL of the incoming activity, through the Bot Framework
connector SDK:
- create_conversation         create a 1:1 conversation
- send_to_conversation        send into it
- get_conversation_members    list team/conversation members

Tokens for the bot's app registration are acquired and cached by
MicrosoftAppCredentials.
"""

import logging
from typing import Callable, Dict, List, Optional, Protocol

from botbuilder.schema import (
    Activity,
    ActivityTypes,
    Attachment,
    ChannelAccount,
    ConversationAccount,
    ConversationParameters,
)
from botframework.connector.aio import ConnectorClient
from botframework.connector.auth import MicrosoftAppCredentials
from msrest.exceptions import ClientException, ClientRequestError, HttpOperationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from welcome_bot.app.errors import ChannelOpenFailure, DeliveryFailure, EnumerationFailure
from welcome_bot.app.models.delivery import ChannelHandle
from welcome_bot.app.models.events import ConversationScope, MemberRef

logger = logging.getLogger(__name__)


class ConnectorGateway(Protocol):
    """Capabilities the welcome flow needs from the messaging platform."""

    async def open_channel(
        self,
        service_url: str,
        member: MemberRef,
        bot: ChannelAccount,
        tenant_id: Optional[str],
        notify: bool = True
    ) -> ChannelHandle:
        ...

    async def send_message(
        self,
        handle: ChannelHandle,
        artifact: Attachment,
        notify: bool = True
    ) -> Optional[str]:
        ...

    async def list_scope_members(
        self,
        service_url: str,
        scope_id: str,
        tenant_id: Optional[str] = None,
        scope: ConversationScope = ConversationScope.TEAM
    ) -> List[MemberRef]:
        ...


def _status_code(exc: BaseException) -> Optional[int]:
    response = getattr(exc, "response", None)
    return getattr(response, "status_code", None)


def _is_transient(exc: BaseException) -> bool:
    """Network errors, throttling and 5xx responses are worth another attempt."""
    if isinstance(exc, ClientRequestError):
        return True
    if isinstance(exc, HttpOperationError):
        status = _status_code(exc)
        return status is not None and (status == 429 or status >= 500)
    return False


class BotConnectorClient:
    """
    Bot Framework connector implementation of ConnectorGateway.

    Channel creation and message sends are single attempts: a failed welcome
    is reported to the caller, not retried here. Member listing is a read and
    is retried on transient errors.
    """

    def __init__(
        self,
        app_id: str,
        app_password: str,
        enumeration_attempts: int = 3,
        enumeration_wait=None,
        client_factory: Optional[Callable[[str], ConnectorClient]] = None
    ):
        """
        Args:
            app_id: Microsoft App ID for the bot
            app_password: Microsoft App Password for the bot
            enumeration_attempts: Attempts when listing members
            enumeration_wait: tenacity wait strategy between listing attempts
            client_factory: Builds a connector client for a service URL
        """
        self.credentials = MicrosoftAppCredentials(app_id, app_password)
        self.enumeration_attempts = enumeration_attempts
        self.enumeration_wait = enumeration_wait or wait_exponential(multiplier=1, min=2, max=10)
        self._client_factory = client_factory or self._create_client
        self._clients: Dict[str, ConnectorClient] = {}

        logger.info(f"BotConnectorClient initialized for app_id: {app_id}")

    def _create_client(self, service_url: str) -> ConnectorClient:
        return ConnectorClient(self.credentials, base_url=service_url)

    def _client_for(self, service_url: str) -> ConnectorClient:
        # One client per regional service URL
        client = self._clients.get(service_url)
        if client is None:
            client = self._client_factory(service_url)
            self._clients[service_url] = client
        return client

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()

    async def open_channel(
        self,
        service_url: str,
        member: MemberRef,
        bot: ChannelAccount,
        tenant_id: Optional[str],
        notify: bool = True
    ) -> ChannelHandle:
        """
        Create a 1:1 conversation between the bot and one member.

        Args:
            service_url: Teams service URL from the triggering activity
            member: Recipient of the conversation
            bot: The bot's own account (activity recipient)
            tenant_id: Tenant the conversation is created in
            notify: Ask Teams to raise an alert for the new conversation

        Returns:
            ChannelHandle for the created conversation

        Raises:
            ChannelOpenFailure: If the platform refused or could not be reached
        """
        parameters = ConversationParameters(
            is_group=False,
            bot=bot,
            members=[ChannelAccount(id=member.id)],
            tenant_id=tenant_id,
            channel_data={
                "tenant": {"id": tenant_id},
                "notification": {"alert": notify},
            }
        )

        try:
            response = await self._client_for(service_url).conversations.create_conversation(parameters)
        except HttpOperationError as e:
            status = _status_code(e)
            raise ChannelOpenFailure(
                f"Create conversation for {member.id} returned {status}",
                status_code=status
            ) from e
        except ClientException as e:
            raise ChannelOpenFailure(f"Create conversation for {member.id} failed: {e}") from e

        conversation_id = getattr(response, "id", None)
        if not conversation_id:
            raise ChannelOpenFailure(f"Create conversation for {member.id} returned no conversation ID")

        return ChannelHandle(
            conversation_id=conversation_id,
            service_url=service_url,
            member_id=member.id
        )

    async def send_message(
        self,
        handle: ChannelHandle,
        artifact: Attachment,
        notify: bool = True
    ) -> Optional[str]:
        """
        Send an attachment into a conversation opened by open_channel.

        Returns:
            ID of the created activity, if the platform returned one

        Raises:
            DeliveryFailure: If the message was rejected or could not be sent
        """
        activity = Activity(
            type=ActivityTypes.message,
            conversation=ConversationAccount(id=handle.conversation_id),
            text_format="xml",
            attachments=[artifact],
            channel_data={"notification": {"alert": notify}}
        )

        try:
            response = await self._client_for(handle.service_url).conversations.send_to_conversation(
                handle.conversation_id,
                activity
            )
        except HttpOperationError as e:
            status = _status_code(e)
            raise DeliveryFailure(
                f"Send to {handle.member_id} returned {status}",
                status_code=status
            ) from e
        except ClientException as e:
            raise DeliveryFailure(f"Send to {handle.member_id} failed: {e}") from e

        return getattr(response, "id", None)

    async def list_scope_members(
        self,
        service_url: str,
        scope_id: str,
        tenant_id: Optional[str] = None,
        scope: ConversationScope = ConversationScope.TEAM
    ) -> List[MemberRef]:
        """
        List everyone in a team or conversation.

        Raises:
            EnumerationFailure: If the members could not be listed
        """
        conversations = self._client_for(service_url).conversations

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.enumeration_attempts),
                wait=self.enumeration_wait,
                retry=retry_if_exception(_is_transient),
                reraise=True
            ):
                with attempt:
                    members = await conversations.get_conversation_members(scope_id)
        except HttpOperationError as e:
            status = _status_code(e)
            raise EnumerationFailure(
                f"Listing members of {scope_id} returned {status}",
                status_code=status
            ) from e
        except ClientException as e:
            raise EnumerationFailure(f"Listing members of {scope_id} failed: {e}") from e

        if not isinstance(members, list):
            raise EnumerationFailure(f"Listing members of {scope_id} returned {type(members).__name__}")

        refs = []
        for account in members:
            if account is None or not account.id:
                logger.warning(f"Skipping member entry without ID in {scope_id}: {account!r}")
                continue
            refs.append(MemberRef(
                id=account.id,
                name=account.name,
                aad_object_id=account.aad_object_id,
                scope=scope,
                tenant_id=tenant_id
            ))

        logger.info(f"Listed {len(refs)} members of {scope_id}")
        return refs
