import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import bookings
import brands
import cart
import combos
import consultations
import dashboard
import orders
import payments
import product_types
import products
import services
import shops
import users
from config import LOG_LEVEL, PORT
from database import db, ensure_indexes
from errors import install_error_handlers

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("camera_shop")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is None:
        logger.warning("Database not configured, set DATABASE_URL and DATABASE_NAME")
    else:
        ensure_indexes()
        users.ensure_default_admin()
    yield


# App setup
app = FastAPI(title="Camera Shop & Service Booking API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)

for module in (
    users, shops, products, brands, product_types, combos, cart, orders,
    services, bookings, payments, dashboard, consultations,
):
    app.include_router(module.router)
app.include_router(bookings.reviews_router)


@app.get("/")
def root():
    return {"message": "Camera Shop API is running"}


@app.get("/test")
def test_database():
    try:
        collections = db.list_collection_names()
        return {"backend": "ok", "database": "ok", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "database": f"error: {str(e)[:80]}"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
