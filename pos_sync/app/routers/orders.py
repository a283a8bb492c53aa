from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, Field

from ..deps import get_ctx
from ..validation import OrderStatus

router = APIRouter(prefix="/orders", tags=["orders"])


class OrderCreateIn(BaseModel):
    customer_name: str = Field(min_length=1, max_length=120)


class OrderStatusIn(BaseModel):
    status: OrderStatus


@router.post("")
async def create_order(data: OrderCreateIn, background: BackgroundTasks, ctx=Depends(get_ctx)):
    # Answer as soon as the order is durable locally; delivery runs after the response.
    order = await ctx.store.commit_order(data.customer_name)
    background.add_task(ctx.reconciler.sync_order, order)
    return {"order": order.model_dump(), "sync": "scheduled"}


@router.get("")
async def list_orders(ctx=Depends(get_ctx)):
    orders = await ctx.store.list_orders()
    return {"orders": [o.model_dump() for o in orders]}


@router.get("/remote")
async def list_remote_orders(ctx=Depends(get_ctx)):
    return {"orders": await ctx.reconciler.pull_remote_orders()}


@router.get("/{order_id}")
async def get_order(order_id: str, ctx=Depends(get_ctx)):
    return (await ctx.store.get_order_by_order_id(order_id)).model_dump()


@router.post("/{order_id}/status")
async def set_order_status(order_id: str, data: OrderStatusIn, ctx=Depends(get_ctx)):
    res = await ctx.reconciler.push_order_status(order_id, data.status)
    return {"order": res.order.model_dump(), "remote_updated": res.remote_updated}
