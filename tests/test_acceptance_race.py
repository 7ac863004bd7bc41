import asyncio

import pytest
from sqlalchemy.future import select

from app.errors import AlreadyTaken
from app.models import JobStatus, Order
from app.schemas.job import OrderCreate
from app.services.broadcaster import Broadcaster
from app.services.job_service import JobService
from app.utils.security import Identity
from conftest import TestingSessionLocal, events


async def _accept(identity, order_id, broadcaster):
    async with TestingSessionLocal() as db:
        return await JobService(db, broadcaster).accept_order(identity, order_id)


@pytest.mark.asyncio
async def test_concurrent_accepts_succeed_exactly_once(make_user, registry, connect):
    customer, _ = await make_user("u1")
    providers = [await make_user(f"p{i}", is_repairman=True) for i in range(5)]
    broadcaster = Broadcaster(registry)
    watcher = await connect(providers[0][0])

    async with TestingSessionLocal() as db:
        order = await JobService(db).create_order(
            Identity.from_user(customer),
            OrderCreate(address="A", vehicle_type="car", complaint="noise", location_lat=1.0, location_lng=2.0),
        )

    results = await asyncio.gather(
        *[_accept(Identity.from_user(user), order.id, broadcaster) for user, _ in providers],
        return_exceptions=True,
    )

    winners = [r for r in results if isinstance(r, Order)]
    losers = [r for r in results if isinstance(r, AlreadyTaken)]
    assert len(winners) == 1
    assert len(losers) == len(providers) - 1

    async with TestingSessionLocal() as db:
        stored = (await db.execute(select(Order).filter(Order.id == order.id))).scalars().one()
    assert stored.status == JobStatus.ACCEPTED
    assert stored.repairman_id == winners[0].repairman_id

    # Losers broadcast nothing
    assert len(events(watcher, "orderAccepted")) == 1


@pytest.mark.asyncio
async def test_accept_and_reject_race_leaves_one_outcome(make_user, registry):
    customer, _ = await make_user("u1")
    p1, _ = await make_user("p1", is_repairman=True)
    p2, _ = await make_user("p2", is_repairman=True)
    broadcaster = Broadcaster(registry)

    async with TestingSessionLocal() as db:
        order = await JobService(db).create_order(
            Identity.from_user(customer),
            OrderCreate(address="A", vehicle_type="car", complaint="noise", location_lat=1.0, location_lng=2.0),
        )

    async def reject():
        async with TestingSessionLocal() as db:
            return await JobService(db, broadcaster).reject_order(Identity.from_user(p2), order.id)

    results = await asyncio.gather(
        _accept(Identity.from_user(p1), order.id, broadcaster), reject(), return_exceptions=True
    )
    successes = [r for r in results if isinstance(r, Order)]
    assert len(successes) == 1
    assert successes[0].status in (JobStatus.ACCEPTED, JobStatus.REJECTED)
