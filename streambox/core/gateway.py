"""
Persistence gateway: key-based CRUD over accounts, assets, purchases and
subscriptions. It is the only component that mutates entity state and the
single source of truth across instances, so nothing here caches rows.

Every method opens its own short session. Database faults other than
uniqueness violations surface as PersistenceUnavailable.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from streambox.core import db as core_db
from streambox.core.errors import PersistenceUnavailable, ValidationFailed
from streambox.modules.accounts.models import Account
from streambox.modules.assets.models import Asset
from streambox.modules.sales.models import Purchase, PaymentMethod
from streambox.modules.subscriptions.models import Subscription

logger = logging.getLogger(__name__)


class PurchaseConflict(Exception):
    """A purchase insert hit one of the purchase uniqueness constraints."""


class PersistenceGateway:
    def __init__(self, engine: AsyncEngine, sessionmaker: Optional[async_sessionmaker] = None):
        self.engine = engine
        self._sessionmaker = sessionmaker or core_db.build_sessionmaker(engine)

    @classmethod
    def from_url(cls, url: str) -> "PersistenceGateway":
        return cls(core_db.build_engine(url))

    async def create_schema(self) -> None:
        await core_db.create_all(self.engine)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessionmaker() as db:
                yield db
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.error("Persistence failure: %s", e)
            raise PersistenceUnavailable("Database unavailable, please retry") from e

    async def ping(self) -> bool:
        try:
            async with self._session() as db:
                await db.execute(select(1))
            return True
        except PersistenceUnavailable:
            return False

    # Accounts

    async def create_account(self, **fields) -> Account:
        account = Account(**fields)
        try:
            async with self._session() as db:
                db.add(account)
                await db.commit()
        except IntegrityError as e:
            raise ValidationFailed("Handle or email already registered") from e
        return account

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        async with self._session() as db:
            return await db.get(Account, account_id)

    async def get_accounts(self, account_ids: Sequence[UUID]) -> Dict[UUID, Account]:
        if not account_ids:
            return {}
        async with self._session() as db:
            result = await db.execute(select(Account).where(Account.id.in_(set(account_ids))))
            return {account.id: account for account in result.scalars().all()}

    async def get_account_by_handle(self, handle: str) -> Optional[Account]:
        async with self._session() as db:
            result = await db.execute(select(Account).where(Account.handle == handle))
            return result.scalars().first()

    async def get_account_by_email(self, email: str) -> Optional[Account]:
        async with self._session() as db:
            result = await db.execute(select(Account).where(Account.email == email))
            return result.scalars().first()

    async def get_account_by_wallet(self, wallet_address: str) -> Optional[Account]:
        async with self._session() as db:
            result = await db.execute(select(Account).where(Account.wallet_address == wallet_address.lower()))
            return result.scalars().first()

    async def update_account(self, account_id: UUID, **fields) -> Optional[Account]:
        async with self._session() as db:
            account = await db.get(Account, account_id)
            if not account:
                return None
            for field, value in fields.items():
                setattr(account, field, value)
            await db.commit()
            return account

    async def get_creator_stats(self, creator_id: UUID) -> Tuple[int, int]:
        async with self._session() as db:
            result = await db.execute(
                select(func.count(Asset.id), func.coalesce(func.sum(Asset.views), 0))
                .where(Asset.creator_id == creator_id)
            )
            count, views = result.one()
            return int(count or 0), int(views or 0)

    async def list_featured_creators(self, limit: int = 6) -> List[Tuple[Account, int, int]]:
        video_count = func.count(Asset.id).label("video_count")
        total_views = func.coalesce(func.sum(Asset.views), 0).label("total_views")
        async with self._session() as db:
            result = await db.execute(
                select(Account, video_count, total_views)
                .join(Asset, Asset.creator_id == Account.id)
                .group_by(Account.id)
                .order_by(total_views.desc())
                .limit(limit)
            )
            return [(account, int(count), int(views)) for account, count, views in result.all()]

    # Assets

    async def create_asset(self, **fields) -> Asset:
        asset = Asset(**fields)
        try:
            async with self._session() as db:
                db.add(asset)
                await db.commit()
        except IntegrityError as e:
            raise ValidationFailed("Creator account does not exist") from e
        return asset

    async def get_asset(self, asset_id: UUID) -> Optional[Asset]:
        async with self._session() as db:
            return await db.get(Asset, asset_id)

    async def list_assets(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        trending: Optional[int] = None,
        creator_id: Optional[UUID] = None,
    ) -> Sequence[Asset]:
        query = select(Asset)
        if trending:
            query = query.order_by(Asset.views.desc()).limit(trending)
        elif category:
            query = query.where(func.lower(Asset.category) == category.lower())
        elif search:
            term = f"%{search.lower()}%"
            query = query.where(
                or_(
                    func.lower(Asset.title).like(term),
                    func.lower(Asset.description).like(term),
                    func.lower(Asset.category).like(term),
                )
            )
        elif creator_id:
            query = query.where(Asset.creator_id == creator_id)
        if not trending:
            query = query.order_by(Asset.created_at.desc())

        async with self._session() as db:
            result = await db.execute(query)
            return result.scalars().all()

    async def update_asset_content(
        self,
        asset_id: UUID,
        content_locator: str,
        storage_proof: Optional[dict],
        is_verified: bool,
        mime_type: Optional[str] = None,
        size_bytes: Optional[int] = None,
    ) -> Optional[Asset]:
        """Swap locator and proof in one UPDATE so readers never see half of it."""
        async with self._session() as db:
            result = await db.execute(
                update(Asset)
                .where(Asset.id == asset_id)
                .values(
                    content_locator=content_locator,
                    storage_proof=storage_proof,
                    is_verified=is_verified,
                    mime_type=mime_type,
                    size_bytes=size_bytes,
                    updated_at=core_db.utcnow(),
                )
            )
            await db.commit()
            if result.rowcount == 0:
                return None
            return await db.get(Asset, asset_id, populate_existing=True)

    async def increment_views(self, asset_id: UUID) -> bool:
        async with self._session() as db:
            result = await db.execute(
                update(Asset).where(Asset.id == asset_id).values(views=Asset.views + 1)
            )
            await db.commit()
            return result.rowcount > 0

    # Purchases

    async def get_purchase(self, buyer_id: str, asset_id: UUID) -> Optional[Purchase]:
        async with self._session() as db:
            result = await db.execute(
                select(Purchase).where(Purchase.buyer_id == buyer_id, Purchase.asset_id == asset_id)
            )
            return result.scalars().first()

    async def get_purchase_by_transaction(self, method: PaymentMethod, transaction_ref: str) -> Optional[Purchase]:
        async with self._session() as db:
            result = await db.execute(
                select(Purchase).where(
                    Purchase.payment_method == method,
                    Purchase.transaction_ref == transaction_ref,
                )
            )
            return result.scalars().first()

    async def insert_purchase(self, **fields) -> Purchase:
        """Insert a purchase; raises PurchaseConflict on any uniqueness violation."""
        purchase = Purchase(**fields)
        try:
            async with self._session() as db:
                db.add(purchase)
                await db.commit()
        except IntegrityError as e:
            raise PurchaseConflict(str(e.orig)) from e
        return purchase

    async def list_purchases_for_buyer(self, buyer_id: str) -> Sequence[Purchase]:
        async with self._session() as db:
            result = await db.execute(
                select(Purchase).where(Purchase.buyer_id == buyer_id).order_by(Purchase.created_at.desc())
            )
            return result.scalars().all()

    # Subscriptions

    async def get_subscription(self, subscriber_id: str, creator_id: UUID) -> Optional[Subscription]:
        async with self._session() as db:
            result = await db.execute(
                select(Subscription).where(
                    Subscription.subscriber_id == subscriber_id,
                    Subscription.creator_id == creator_id,
                )
            )
            return result.scalars().first()

    async def activate_subscription(self, subscriber_id: str, creator_id: UUID) -> Subscription:
        existing = await self.get_subscription(subscriber_id, creator_id)
        if existing is None:
            sub = Subscription(subscriber_id=subscriber_id, creator_id=creator_id, is_active=True)
            try:
                async with self._session() as db:
                    db.add(sub)
                    await db.commit()
                return sub
            except IntegrityError:
                # Lost a race with a concurrent subscribe; fall through to reactivation
                pass

        async with self._session() as db:
            await db.execute(
                update(Subscription)
                .where(Subscription.subscriber_id == subscriber_id, Subscription.creator_id == creator_id)
                .values(is_active=True, cancelled_at=None)
            )
            await db.commit()
        return await self.get_subscription(subscriber_id, creator_id)

    async def deactivate_subscription(self, subscriber_id: str, creator_id: UUID) -> Optional[Subscription]:
        async with self._session() as db:
            await db.execute(
                update(Subscription)
                .where(
                    Subscription.subscriber_id == subscriber_id,
                    Subscription.creator_id == creator_id,
                    Subscription.is_active.is_(True),
                )
                .values(is_active=False, cancelled_at=core_db.utcnow())
            )
            await db.commit()
        return await self.get_subscription(subscriber_id, creator_id)

    async def list_subscriptions_for_subscriber(self, subscriber_id: str) -> Sequence[Subscription]:
        async with self._session() as db:
            result = await db.execute(
                select(Subscription)
                .where(Subscription.subscriber_id == subscriber_id)
                .order_by(Subscription.created_at.desc())
            )
            return result.scalars().all()
