from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_broadcaster, get_current_identity
from app.schemas.job import OrderCreate, OrderEnvelope, OrderList, OrderResponse
from app.services.broadcaster import Broadcaster
from app.services.job_service import JobService
from app.utils.security import Identity

router = APIRouter(tags=["Orders"])


def _envelope(message: str, order) -> OrderEnvelope:
    return OrderEnvelope(message=message, order=OrderResponse.model_validate(order))


@router.post("/order/create", response_model=OrderEnvelope, status_code=status.HTTP_201_CREATED)
async def create_order(
    req: OrderCreate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    order = await JobService(db, broadcaster).create_order(identity, req)
    return _envelope("Order created", order)


@router.post("/order/accept/{order_id}", response_model=OrderEnvelope)
async def accept_order(
    order_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    order = await JobService(db, broadcaster).accept_order(identity, order_id)
    return _envelope("Order accepted", order)


@router.post("/order/reject/{order_id}", response_model=OrderEnvelope)
async def reject_order(
    order_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    order = await JobService(db, broadcaster).reject_order(identity, order_id)
    return _envelope("Order rejected", order)


@router.post("/order/on-the-way/{order_id}", response_model=OrderEnvelope)
async def start_order(
    order_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    order = await JobService(db, broadcaster).start_order(identity, order_id)
    return _envelope("Repairman is on the way", order)


@router.post("/order/cancel/{order_id}", response_model=OrderEnvelope)
async def cancel_order(
    order_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    order = await JobService(db, broadcaster).cancel_order(identity, order_id)
    return _envelope("Order canceled", order)


@router.post("/order/finish/{order_id}", response_model=OrderEnvelope)
async def finish_order(
    order_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    order = await JobService(db, broadcaster).finish_order(identity, order_id)
    return _envelope("Order completed", order)


@router.get("/api/order/{order_id}")
async def get_order(order_id: int, identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    order = await JobService(db).get_order(identity, order_id)
    return {"order": OrderResponse.model_validate(order).wire()}


@router.get("/api/orders", response_model=OrderList)
async def my_orders(identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    orders = await JobService(db).list_user_orders(identity.user_id)
    return OrderList(orders=[OrderResponse.model_validate(o) for o in orders])


@router.get("/api/repairman/orders", response_model=OrderList)
async def repairman_orders(identity: Identity = Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    orders = await JobService(db).list_repairman_orders(identity)
    return OrderList(orders=[OrderResponse.model_validate(o) for o in orders])
