from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_ctx

router = APIRouter(prefix="/sync", tags=["sync"])


class ConnectivityIn(BaseModel):
    online: bool


@router.get("/status")
async def sync_status(ctx=Depends(get_ctx)):
    last = ctx.resolver.last
    return {
        "online": ctx.connectivity.online,
        "mode": last.mode,
        "server_url": last.url,
        "queued": await ctx.queue.count(),
        "draining": ctx.reconciler.draining,
    }


@router.get("/queue")
async def sync_queue(ctx=Depends(get_ctx)):
    return {"queue": [e.model_dump() for e in await ctx.queue.get_queued()]}


@router.post("/connectivity")
async def set_connectivity(data: ConnectivityIn, ctx=Depends(get_ctx)):
    changed = ctx.connectivity.set_online(data.online)
    if changed and data.online:
        ctx.resolver.invalidate()
    return {"online": ctx.connectivity.online, "changed": changed}


@router.post("/drain")
async def drain(ctx=Depends(get_ctx)):
    ctx.resolver.invalidate()
    result = await ctx.reconciler.drain()
    return {"result": result.model_dump() if result else None, "queued": await ctx.queue.count()}


@router.post("/catalog")
async def sync_catalog(ctx=Depends(get_ctx)):
    return (await ctx.reconciler.sync_catalog()).model_dump()


@router.get("/export")
async def export_data(ctx=Depends(get_ctx)):
    return await ctx.store.export_all()


@router.post("/import")
async def import_data(data: dict, ctx=Depends(get_ctx)):
    return await ctx.store.import_all(data)
