from fastapi import APIRouter

from singlepiece.admin.routes import admin_inventory_router, admin_payments_router
from singlepiece.api import version_prefix
from singlepiece.cart.routes import carts_router
from singlepiece.checkout.routes import checkout_router
from singlepiece.common.routes import home_router
from singlepiece.inventory.routes import prods_public_router
from singlepiece.orders.routes import payments_router

public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(prods_public_router, prefix="/products", tags=["products-public"])
public_routers.include_router(carts_router, prefix="/cart", tags=["cart"])
public_routers.include_router(checkout_router, prefix="/checkout", tags=["checkout"])
public_routers.include_router(payments_router, prefix="/payments", tags=["payments"])
public_routers.include_router(home_router, tags=["home"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin")

admin_routers.include_router(admin_payments_router, prefix="/payments", tags=["payments-admin"])
admin_routers.include_router(admin_inventory_router, prefix="/inventory", tags=["inventory-admin"])
