from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_identity
from app.schemas.provider import (
    ProviderGrant,
    RepairmanCreate,
    RepairmanResponse,
    RepairmanStatusResponse,
    RepairmanUpdate,
    ShopCreate,
    ShopResponse,
    ShopStatusResponse,
    ShopUpdate,
)
from app.schemas.user import UserResponse
from app.services.provider_service import ProviderService
from app.utils.security import Identity, create_token

router = APIRouter(prefix="/api", tags=["Providers"])


def _grant(message: str, user) -> ProviderGrant:
    # Role flags live in the token, so hand out a fresh one whenever they change
    return ProviderGrant(message=message, token=create_token(user), user=UserResponse.model_validate(user))


@router.post("/become-repairman", response_model=ProviderGrant, status_code=status.HTTP_201_CREATED)
async def become_repairman(
    req: RepairmanCreate, identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)
):
    user = await ProviderService(db).become_repairman(identity.user_id, req)
    return _grant("You are now a repairman", user)


@router.get("/check-repairman", response_model=RepairmanStatusResponse)
async def check_repairman(identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    repairman = await ProviderService(db).get_repairman(identity.user_id)
    return RepairmanStatusResponse(
        is_repairman=repairman is not None,
        repairman=RepairmanResponse.model_validate(repairman) if repairman else None,
    )


@router.post("/edit-repairman", response_model=RepairmanResponse)
async def edit_repairman(
    req: RepairmanUpdate, identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)
):
    return await ProviderService(db).edit_repairman(identity.user_id, req)


@router.post("/resign-repairman", response_model=ProviderGrant)
async def resign_repairman(identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    user = await ProviderService(db).resign_repairman(identity.user_id)
    return _grant("You are no longer a repairman", user)


@router.post("/create-shop", response_model=ProviderGrant, status_code=status.HTTP_201_CREATED)
async def create_shop(
    req: ShopCreate, identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)
):
    user = await ProviderService(db).create_shop(identity.user_id, req)
    return _grant("Shop created", user)


@router.get("/check-shop", response_model=ShopStatusResponse)
async def check_shop(identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    shop = await ProviderService(db).get_shop_by_owner(identity.user_id)
    return ShopStatusResponse(has_shop=shop is not None, shop=ShopResponse.model_validate(shop) if shop else None)


@router.post("/edit-shop", response_model=ShopResponse)
async def edit_shop(req: ShopUpdate, identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    return await ProviderService(db).edit_shop(identity.user_id, req)


@router.post("/close-shop", response_model=ProviderGrant)
async def close_shop(identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    user = await ProviderService(db).close_shop(identity.user_id)
    return _grant("Shop closed", user)


@router.get("/get-all-shop")
async def get_all_shops(identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    shops = await ProviderService(db).list_shops()
    return {"shops": [ShopResponse.model_validate(s).wire() for s in shops]}


@router.get("/get-shop-by-id/{shop_id}")
async def get_shop_by_id(shop_id: int, identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    shop = await ProviderService(db).get_shop(shop_id)
    return {"shop": ShopResponse.model_validate(shop).wire()}
