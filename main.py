import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

import config
from database import Database
from errors import Forbidden, InvalidCredentials, ServiceError, Unauthorized
from schemas import BasketInput, Identity, OrderIn, ProductIn, ProfileUpdate, SigninInput, SignupInput, TokenResponse
from security import create_access_token, decode_token, hash_password, verify_password

logger = logging.getLogger(__name__)


# Dependencies

def get_db(request: Request) -> Database:
    return request.app.state.db


def get_identity(authorization: Optional[str] = Header(default=None)) -> Identity:
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("Unauthorized")
    return decode_token(authorization.split(" ", 1)[1])


def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if identity.role != "ADMIN":
        raise Forbidden("Admins only")
    return identity


def require_owner(identity: Identity, user_id) -> None:
    if identity.role != "ADMIN" and identity.sub != str(user_id):
        raise Forbidden("Not allowed to access another user")


# App

def create_app(database: Optional[Database] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.db is None
        if owned:
            app.state.db = Database(config.DATABASE_URL)
            app.state.db.create_all()
            if config.SEED_PRODUCTS:
                app.state.db.seed_products()
        yield
        if owned:
            app.state.db.dispose()

    app = FastAPI(title="Shop API", lifespan=lifespan)
    app.state.db = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{where}: {first.get('msg', 'invalid')}" if where else first.get("msg", "Invalid input")
        return JSONResponse(status_code=400, content={"message": message})

    @app.get("/")
    def read_root():
        return {"message": "Shop API"}

    # Auth
    @app.post("/auth/signup", response_model=TokenResponse)
    def signup(payload: SignupInput, db: Database = Depends(get_db)):
        user = db.create_user(
            email=payload.email,
            password_hash=hash_password(payload.password),
            fullname=payload.fullname or "User",
            role=config.role_for_email(payload.email),
        )
        logger.info("Signed up %s as %s", user.email, user.role)
        return TokenResponse(token=create_access_token(user), user=user)

    @app.post("/auth/signin", response_model=TokenResponse)
    def signin(payload: SigninInput, db: Database = Depends(get_db)):
        found = db.get_credentials(payload.email)
        if not found or not verify_password(payload.password, found[1]):
            logger.info("Failed sign in for %s", payload.email)
            raise InvalidCredentials("Invalid email or password")
        user = found[0]
        return TokenResponse(token=create_access_token(user), user=user)

    @app.get("/auth/me")
    def me(identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
        return {"user": db.get_user(identity.sub)}

    # Users
    @app.get("/users/{user_id}")
    def get_profile(user_id: int, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
        require_owner(identity, user_id)
        return {"profile": db.get_profile(user_id)}

    @app.put("/users/{user_id}")
    def update_profile(user_id: int, data: ProfileUpdate, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
        require_owner(identity, user_id)
        db.update_profile(user_id, data)
        return {"ok": True, "profile": db.get_profile(user_id)}

    @app.get("/users/{user_id}/basket")
    def get_basket(user_id: int, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
        require_owner(identity, user_id)
        return {"basket": db.get_basket(user_id)}

    @app.put("/users/{user_id}/basket")
    def save_basket(user_id: int, data: BasketInput, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
        require_owner(identity, user_id)
        return {"ok": True, "basket": db.save_basket(user_id, data.basket)}

    # Products
    @app.get("/products")
    def list_products(offset: int = Query(0, ge=0), limit: int = Query(config.PAGE_SIZE, ge=1), db: Database = Depends(get_db)):
        return db.list_products(offset, limit)

    @app.get("/products/featured")
    def list_featured(limit: int = Query(config.PAGE_SIZE, ge=1), db: Database = Depends(get_db)):
        return {"products": db.list_featured(limit)}

    @app.get("/products/recommended")
    def list_recommended(limit: int = Query(config.PAGE_SIZE, ge=1), db: Database = Depends(get_db)):
        return {"products": db.list_recommended(limit)}

    @app.get("/products/search")
    def search_products(q: str = "", limit: int = Query(config.PAGE_SIZE, ge=1), db: Database = Depends(get_db)):
        return {"products": db.search_products(q, limit)}

    @app.get("/products/{product_id}")
    def get_product(product_id: str, db: Database = Depends(get_db)):
        return {"product": db.get_product(product_id)}

    @app.post("/products")
    def create_product(data: ProductIn, identity: Identity = Depends(require_admin), db: Database = Depends(get_db)):
        product = db.create_product(data)
        logger.info("Product %s created by %s", product.id, identity.email)
        return {"id": product.id, "product": product}

    @app.put("/products/{product_id}")
    def update_product(product_id: str, data: ProductIn, identity: Identity = Depends(require_admin), db: Database = Depends(get_db)):
        product = db.update_product(product_id, data)
        logger.info("Product %s updated by %s", product.id, identity.email)
        return {"ok": True, "product": product}

    @app.delete("/products/{product_id}")
    def delete_product(product_id: str, identity: Identity = Depends(require_admin), db: Database = Depends(get_db)):
        db.delete_product(product_id)
        logger.info("Product %s deleted by %s", product_id, identity.email)
        return {"ok": True}

    # Orders
    @app.post("/orders")
    def create_order(data: OrderIn, identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
        user_id = data.user_id or identity.sub
        require_owner(identity, user_id)
        order = db.create_order(user_id, data)
        logger.info("Order %s recorded for user %s", order.id, user_id)
        return {"id": order.id, "order": order}

    @app.get("/orders")
    def list_orders(user_id: Optional[str] = Query(None, alias="userId"), identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
        user_id = user_id or identity.sub
        require_owner(identity, user_id)
        return {"orders": db.list_orders(user_id)}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
