from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

import auth
from auth import get_current_user
from config import settings
from database import connect, ensure_indexes, get_db, get_documents, serialize
from errors import InvalidRequest, ShopError
from logging_config import configure_logging
from services import CartService, CheckoutService

logger = structlog.get_logger(__name__)


# --------------------- Models ---------------------

class SignupRequest(BaseModel):
    name: Optional[str] = None
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class CartItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: Optional[str] = Field(None, alias="itemId")
    quantity: int = 1


class CartItemUpdate(CartItemRequest):
    quantity: int


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shipping_address: Optional[str] = Field(None, alias="shippingAddress")
    payment_method: Optional[str] = Field(None, alias="paymentMethod")


# --------------------- Error handlers ---------------------

async def shop_error_handler(request: Request, exc: ShopError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message}, headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"message": InvalidRequest.default_message})


async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database operation failed", path=request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"message": ShopError.default_message})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", path=request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"message": ShopError.default_message})


# --------------------- App ---------------------

def create_app(db: Optional[Database] = None) -> FastAPI:
    """
    Build the API around ``db``.

    When no database is given the app connects from settings on startup and
    closes that client on shutdown. A database passed in stays the caller's.
    """
    configure_logging(settings.log_level)
    owns_client = db is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting service", app_name=settings.app_name)
        if owns_client:
            app.state.db = connect(settings.database_url, settings.database_name)
        try:
            try:
                ensure_indexes(app.state.db)
            except PyMongoError as e:
                logger.error("Failed to prepare database indexes", error=str(e))
                raise
            yield
        finally:
            if owns_client:
                app.state.db.client.close()
                app.state.db = None
            logger.info("Service stopped")

    app = FastAPI(title=settings.app_name, version="1.0.0", debug=settings.debug, lifespan=lifespan)
    app.state.db = db

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ShopError, shop_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(PyMongoError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:

    @app.get("/")
    def root():
        return {"message": f"{settings.app_name} is running"}

    @app.get("/health")
    def health(db: Database = Depends(get_db)):
        try:
            db.list_collection_names()
        except PyMongoError as e:
            logger.error("Health check failed", error=str(e))
            return JSONResponse(status_code=503, content={"status": "unhealthy", "database": "disconnected"})
        return {"status": "healthy", "database": "connected"}

    # Auth
    @app.post("/signup", status_code=201)
    def signup(req: SignupRequest, db: Database = Depends(get_db)):
        token = auth.signup(db, req.name, req.email, req.password)
        return {"token": token}

    @app.post("/login")
    def login(req: LoginRequest, db: Database = Depends(get_db)):
        return {"token": auth.login(db, req.email, req.password)}

    # Items
    @app.get("/items")
    def list_items(db: Database = Depends(get_db)):
        return serialize(get_documents(db, "item"))

    # Cart
    @app.get("/cart")
    def get_cart(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
        return serialize(CartService(db).get_detailed(user["_id"]))

    @app.post("/cart")
    def add_to_cart(
        body: CartItemRequest,
        user: dict = Depends(get_current_user),
        db: Database = Depends(get_db),
    ):
        cart = CartService(db).add_item(user["_id"], body.item_id, body.quantity)
        return serialize(cart)

    @app.put("/cart")
    def update_cart(
        body: CartItemUpdate,
        user: dict = Depends(get_current_user),
        db: Database = Depends(get_db),
    ):
        cart = CartService(db).update_item(user["_id"], body.item_id, body.quantity)
        return serialize(cart)

    @app.delete("/cart")
    def clear_cart(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
        CartService(db).clear(user["_id"])
        return {"message": "Cart cleared"}

    # Orders
    @app.post("/checkout", status_code=201)
    def checkout(
        body: Optional[CheckoutRequest] = None,
        user: dict = Depends(get_current_user),
        db: Database = Depends(get_db),
    ):
        body = body or CheckoutRequest()
        order = CheckoutService(db).checkout(user["_id"], body.shipping_address, body.payment_method)
        return {"message": "Order placed", "order": serialize(order)}

    @app.get("/orders")
    def my_orders(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
        return serialize(CheckoutService(db).list_orders(user["_id"]))


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
