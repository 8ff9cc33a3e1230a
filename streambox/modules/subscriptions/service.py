import logging
from uuid import UUID

from streambox.core.errors import AccountNotFound, ValidationFailed
from streambox.core.gateway import PersistenceGateway
from streambox.modules.subscriptions.models import Subscription

logger = logging.getLogger(__name__)


async def subscribe_to_creator(gateway: PersistenceGateway, subscriber_id: str, creator_id: UUID) -> Subscription:
    if subscriber_id == str(creator_id):
        raise ValidationFailed("Creators cannot subscribe to themselves")
    if not await gateway.get_account(creator_id):
        raise AccountNotFound(creator_id)

    # Re-activates a cancelled subscription instead of creating a second row
    sub = await gateway.activate_subscription(subscriber_id, creator_id)
    logger.info("Subscription active: subscriber=%s creator=%s", subscriber_id, creator_id)
    return sub


async def cancel_subscription(gateway: PersistenceGateway, subscriber_id: str, creator_id: UUID) -> Subscription:
    sub = await gateway.deactivate_subscription(subscriber_id, creator_id)
    if sub is None:
        raise ValidationFailed("No subscription to this creator", creator_id=str(creator_id))
    logger.info("Subscription cancelled: subscriber=%s creator=%s", subscriber_id, creator_id)
    return sub


async def check_subscription_access(gateway: PersistenceGateway, subscriber_id: str, creator_id: UUID) -> bool:
    sub = await gateway.get_subscription(subscriber_id, creator_id)
    return sub is not None and sub.is_active
