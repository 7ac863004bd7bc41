import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.database import persistence_guard, unit_of_work
from app.errors import Conflict, NotFound
from app.models.provider import Repairman, Shop
from app.models.user import User
from app.schemas.provider import RepairmanCreate, RepairmanUpdate, ShopCreate, ShopUpdate
from app.utils.validators import normalize_phone, require_fields

logger = logging.getLogger(__name__)


class ProviderService:
    """Repairman and shop profiles. Each profile row and its flag on User change together."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    # --- Repairman ---

    @persistence_guard
    async def get_repairman(self, user_id: int) -> Optional[Repairman]:
        result = await self.db.execute(select(Repairman).filter(Repairman.user_id == user_id))
        return result.scalars().first()

    @persistence_guard
    async def become_repairman(self, user_id: int, req: RepairmanCreate) -> User:
        user = await self._user(user_id)
        if await self.get_repairman(user_id):
            raise Conflict("User is already a repairman")

        async with unit_of_work(self.db):
            self.db.add(
                Repairman(
                    user_id=user.id,
                    skills=list(req.skills),
                    services=dict(req.services),
                    phone_number=normalize_phone(req.phone_number) if req.phone_number else user.phone_number,
                    verified=False,
                )
            )
            user.is_repairman = True
        await self.db.refresh(user)
        logger.info("User %s became a repairman", user.id)
        return user

    @persistence_guard
    async def edit_repairman(self, user_id: int, req: RepairmanUpdate) -> Repairman:
        repairman = await self.get_repairman(user_id)
        if not repairman:
            raise NotFound("Repairman profile not found")
        if req.skills is not None:
            repairman.skills = list(req.skills)
        if req.services is not None:
            repairman.services = dict(req.services)
        if req.phone_number is not None:
            phone = normalize_phone(req.phone_number)
            if phone != repairman.phone_number:
                # A new number has to be verified again
                repairman.phone_number = phone
                repairman.verified = False
        await self.db.commit()
        await self.db.refresh(repairman)
        return repairman

    @persistence_guard
    async def resign_repairman(self, user_id: int) -> User:
        user = await self._user(user_id)
        repairman = await self.get_repairman(user_id)
        if not repairman:
            raise NotFound("Repairman profile not found")

        async with unit_of_work(self.db):
            await self.db.delete(repairman)
            user.is_repairman = False
        await self.db.refresh(user)
        logger.info("User %s resigned as repairman", user.id)
        return user

    # --- Shop ---

    @persistence_guard
    async def get_shop(self, shop_id: int) -> Shop:
        shop = await self.db.get(Shop, shop_id)
        if not shop:
            raise NotFound("Shop not found")
        return shop

    @persistence_guard
    async def get_shop_by_owner(self, owner_id: int) -> Optional[Shop]:
        result = await self.db.execute(select(Shop).filter(Shop.owner_id == owner_id))
        return result.scalars().first()

    @persistence_guard
    async def list_shops(self) -> List[Shop]:
        result = await self.db.execute(select(Shop).order_by(Shop.id))
        return result.scalars().all()

    @persistence_guard
    async def create_shop(self, owner_id: int, req: ShopCreate) -> User:
        require_fields(req, ["name", "address"])
        user = await self._user(owner_id)
        if await self.get_shop_by_owner(owner_id):
            raise Conflict("User already owns a shop")

        async with unit_of_work(self.db):
            self.db.add(
                Shop(
                    owner_id=user.id,
                    name=req.name.strip(),
                    address=req.address.strip(),
                    location_lat=req.location_lat,
                    location_lng=req.location_lng,
                    services=dict(req.services),
                    photos=list(req.photos),
                    phone_number=normalize_phone(req.phone_number) if req.phone_number else user.phone_number,
                )
            )
            user.has_shop = True
        await self.db.refresh(user)
        logger.info("User %s opened a shop", user.id)
        return user

    @persistence_guard
    async def edit_shop(self, owner_id: int, req: ShopUpdate) -> Shop:
        shop = await self.get_shop_by_owner(owner_id)
        if not shop:
            raise NotFound("Shop not found")
        for field, value in req.model_dump(exclude_none=True).items():
            if field == "phone_number":
                value = normalize_phone(value)
            setattr(shop, field, value)
        await self.db.commit()
        await self.db.refresh(shop)
        return shop

    @persistence_guard
    async def close_shop(self, owner_id: int) -> User:
        user = await self._user(owner_id)
        shop = await self.get_shop_by_owner(owner_id)
        if not shop:
            raise NotFound("Shop not found")

        async with unit_of_work(self.db):
            await self.db.delete(shop)
            user.has_shop = False
        await self.db.refresh(user)
        logger.info("User %s closed shop %s", user.id, shop.id)
        return user
