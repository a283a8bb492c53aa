from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_ctx
from ..models import Product

router = APIRouter(tags=["cart"])


class ProductsIn(BaseModel):
    products: List[Product]


class CartItemIn(BaseModel):
    product_id: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)


class QuantityIn(BaseModel):
    quantity: int


@router.get("/products")
async def list_products(ctx=Depends(get_ctx)):
    products = await ctx.store.get_products()
    return {"products": [p.model_dump() for p in products]}


@router.put("/products")
async def put_products(data: ProductsIn, ctx=Depends(get_ctx)):
    saved = await ctx.store.put_products(data.products)
    return {"count": len(saved)}


@router.get("/cart")
async def get_cart(ctx=Depends(get_ctx)):
    return (await ctx.store.get_cart()).model_dump()


@router.post("/cart/items")
async def add_cart_item(data: CartItemIn, ctx=Depends(get_ctx)):
    return (await ctx.store.add_item(data.product_id, data.quantity)).model_dump()


@router.put("/cart/items/{product_id}")
async def set_cart_item_quantity(product_id: str, data: QuantityIn, ctx=Depends(get_ctx)):
    return (await ctx.store.set_item_quantity(product_id, data.quantity)).model_dump()


@router.delete("/cart")
async def clear_cart(ctx=Depends(get_ctx)):
    return (await ctx.store.clear_cart()).model_dump()
