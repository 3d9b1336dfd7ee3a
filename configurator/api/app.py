"""HTTP boundary for the Dish Configurator.

Exposes the catalog, login (password + optional TOTP) and order routes as a
FastAPI application. Sessions live in a signed cookie; the session records the
user id and whether the TOTP second factor was completed.

Status codes:
- 400: malformed input, or an order rejected by a constraint violation
- 401: not logged in, wrong credentials, missing second factor
- 404: order not found or not cancellable
- 500: persistence failure
"""

from typing import List, Optional

from fastapi import Depends, FastAPI, Path, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from configurator.auth.users import AuthenticationError, User, UserStore, verify_totp
from configurator.catalog.store import CatalogStore
from configurator.db.database import Database, init_db
from configurator.models.models import (
    BaseDish,
    CreatedOrder,
    DishOut,
    IngredientOut,
    LoginRequest,
    Order,
    OrderRequest,
    SizeOut,
    TotpRequest,
    UserInfo,
)
from configurator.orders.service import CancellationError, CancellationReason, OrderRejectedError, OrderService
from configurator.utils.config import config
from configurator.utils.logger import logger


SESSION_USER_KEY = "user_id"
SESSION_METHOD_KEY = "method"
TOTP_METHOD = "totp"

CANCELLATION_STATUS = {
    CancellationReason.NOT_AUTHENTICATED: 401,
    CancellationReason.MISSING_SECOND_FACTOR: 401,
    CancellationReason.NOT_FOUND_OR_NOT_CANCELLABLE: 404,
}


# ============================================================================
# Dependencies
# ============================================================================


def get_catalog_store(request: Request) -> CatalogStore:
    return request.app.state.catalog_store


def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service


def get_user_store(request: Request) -> UserStore:
    return request.app.state.user_store


def optional_user(request: Request, users: UserStore = Depends(get_user_store)) -> Optional[User]:
    """The logged-in user, or None. A session pointing at a deleted user is cleared."""
    user_id = request.session.get(SESSION_USER_KEY)
    if user_id is None:
        return None
    user = users.get_user(user_id)
    if user is None:
        request.session.clear()
    return user


def current_user(user: Optional[User] = Depends(optional_user)) -> User:
    if user is None:
        raise AuthenticationError("Not authenticated")
    return user


def has_second_factor(request: Request) -> bool:
    return request.session.get(SESSION_METHOD_KEY) == TOTP_METHOD


def user_info(request: Request, user: User) -> UserInfo:
    return UserInfo(
        id=user.id,
        username=user.username,
        name=user.name,
        can_do_totp=user.can_do_totp,
        is_totp=has_second_factor(request),
    )


# ============================================================================
# Application factory
# ============================================================================


def create_app(database: Optional[Database] = None) -> FastAPI:
    """Build the API application.

    Args:
        database: Database to serve from. Defaults to `init_db()` on the
            configured DATABASE_URL (schema created, demo data seeded when
            SEED_ON_STARTUP is set).

    Returns:
        Configured FastAPI application.
    """
    database = database or init_db()

    app = FastAPI(title="Restaurant Dish Configurator")
    app.state.database = database
    app.state.catalog_store = CatalogStore(database)
    app.state.order_service = OrderService(database, app.state.catalog_store)
    app.state.user_store = UserStore(database)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.CORS_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=config.SESSION_SECRET,
        https_only=config.SESSION_HTTPS_ONLY,
        same_site="lax",
    )

    _register_exception_handlers(app)
    _register_routes(app)

    logger.info(f"API application created (CORS origin: {config.CORS_ORIGIN})")
    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()]
        logger.warning(f"Invalid request to {request.url.path}: {errors}")
        return JSONResponse(status_code=400, content={"errors": errors})

    @app.exception_handler(OrderRejectedError)
    async def order_rejected_handler(request: Request, exc: OrderRejectedError) -> JSONResponse:
        return JSONResponse(status_code=400, content=exc.violation.to_response())

    @app.exception_handler(CancellationError)
    async def cancellation_error_handler(request: Request, exc: CancellationError) -> JSONResponse:
        return JSONResponse(
            status_code=CANCELLATION_STATUS[exc.reason],
            content={"error": str(exc), "reason": exc.reason.value},
        )

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
        return JSONResponse(status_code=401, content={"error": str(exc)})

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Database error"})


def _register_routes(app: FastAPI) -> None:
    @app.get("/health")
    def health() -> dict:
        return {"status": "healthy"}

    # ------------------------------------------------------------------
    # Catalog (public)
    # ------------------------------------------------------------------

    @app.get("/api/dishes", response_model=List[DishOut])
    def list_dishes(store: CatalogStore = Depends(get_catalog_store)) -> List[DishOut]:
        return [DishOut.from_dish(dish) for dish in store.list_dishes()]

    @app.get("/api/ingredients", response_model=List[IngredientOut])
    def list_ingredients(store: CatalogStore = Depends(get_catalog_store)) -> List[IngredientOut]:
        snapshot = store.snapshot()
        return [
            IngredientOut(
                id=ingredient.id,
                name=ingredient.name,
                price=float(ingredient.price),
                availability=ingredient.stock,
                requires=sorted(snapshot.names(ingredient.requires)),
                incompatible=sorted(snapshot.names(ingredient.incompatible_with)),
            )
            for ingredient in snapshot.list_ingredients()
        ]

    @app.get("/api/base-dishes", response_model=List[BaseDish])
    def list_base_dishes(store: CatalogStore = Depends(get_catalog_store)) -> List[BaseDish]:
        return store.list_base_dishes()

    @app.get("/api/sizes", response_model=List[SizeOut])
    def list_sizes(store: CatalogStore = Depends(get_catalog_store)) -> List[SizeOut]:
        return [
            SizeOut(id=s.id, label=s.label, base_price=float(s.base_price), max_ingredients=s.max_ingredients)
            for s in store.list_sizes()
        ]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @app.post("/api/sessions", response_model=UserInfo)
    def login(
        body: LoginRequest, request: Request, users: UserStore = Depends(get_user_store)
    ) -> UserInfo:
        user = users.authenticate(body.username, body.password)
        request.session.clear()
        request.session[SESSION_USER_KEY] = user.id
        return user_info(request, user)

    @app.post("/api/login-totp")
    def login_totp(body: TotpRequest, request: Request, user: User = Depends(current_user)) -> dict:
        if not verify_totp(user.secret, body.code):
            logger.warning("Invalid TOTP code", extra={"user_id": user.id})
            raise AuthenticationError("Invalid TOTP code")
        request.session[SESSION_METHOD_KEY] = TOTP_METHOD
        logger.info("TOTP verification succeeded", extra={"user_id": user.id})
        return {"otp": "authorized"}

    @app.get("/api/sessions/current", response_model=UserInfo)
    def get_current_session(request: Request, user: User = Depends(current_user)) -> UserInfo:
        return user_info(request, user)

    @app.delete("/api/sessions/current")
    def logout(request: Request) -> dict:
        user_id = request.session.get(SESSION_USER_KEY)
        request.session.clear()
        logger.info("Logged out", extra={"user_id": user_id})
        return {"message": "Logout successful"}

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    @app.post("/api/orders", response_model=CreatedOrder, status_code=201)
    def create_order(
        body: OrderRequest,
        request: Request,
        user: User = Depends(current_user),
        orders: OrderService = Depends(get_order_service),
    ) -> CreatedOrder:
        return orders.create_order(user.id, body.dish_id, body.ingredient_ids, has_second_factor(request))

    @app.get("/api/orders", response_model=List[Order])
    def list_orders(
        user: User = Depends(current_user), orders: OrderService = Depends(get_order_service)
    ) -> List[Order]:
        return orders.list_orders(user.id)

    @app.delete("/api/orders/{order_id}")
    def cancel_order(
        request: Request,
        order_id: int = Path(ge=1),
        user: Optional[User] = Depends(optional_user),
        orders: OrderService = Depends(get_order_service),
    ) -> dict:
        orders.cancel_order(order_id, user.id if user else None, has_second_factor(request))
        return {"message": "Order cancelled successfully"}
