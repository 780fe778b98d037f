from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from authartic.core.errors import Conflict, NotFound, ValidationFailed
from authartic.models.subscription import SubscriptionPlan, SubscriptionPlanFeature


async def admin_create_plan(db: AsyncSession, *, data) -> SubscriptionPlan:
    plan = SubscriptionPlan(
        name=data.name,
        description=data.description,
        price=data.price,
        is_active=data.is_active,
        features=[SubscriptionPlanFeature(name=f.name, value=f.value) for f in data.features],
    )

    db.add(plan)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Plan name already exists (must be unique)")

    return await get_plan(db, plan_id=plan.id)


async def get_plan(db: AsyncSession, *, plan_id: int) -> SubscriptionPlan:
    if not plan_id:
        raise ValidationFailed("Subscription ID is required.")

    res = await db.execute(
        select(SubscriptionPlan)
        .where(SubscriptionPlan.id == plan_id)
        .execution_options(populate_existing=True)
    )
    plan = res.scalar_one_or_none()
    if not plan:
        raise NotFound("Subscription plan not found.")
    return plan


async def list_plans(db: AsyncSession, *, is_active: bool | None = None) -> list[SubscriptionPlan]:
    stmt = select(SubscriptionPlan)

    if is_active is not None:
        stmt = stmt.where(SubscriptionPlan.is_active == is_active)

    stmt = stmt.order_by(SubscriptionPlan.id.asc())

    res = await db.execute(stmt)
    return list(res.scalars().all())
