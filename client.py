"""
Client service facade

``Backend`` is the one interface the front end talks to. Three adapters
implement it (HTTP API, local storage, managed document database) and
``create_service`` picks one from configuration. Every adapter resolves to
the same records from ``schemas`` and fails with the same errors from
``errors``.
"""

import base64
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

import config
from errors import Forbidden, InvalidInput, NotSupported, ServiceError, Unauthorized
from schemas import BasketItem, Order, Product, ProductPage, Profile, User
from session import AuthSession
from storage import LocalStorage

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def coerce(model: Type[M], value: Any) -> M:
    """Accept either a record or a plain mapping; bad shapes are InvalidInput."""
    if isinstance(value, model):
        return value
    if isinstance(value, BaseModel):
        value = value.model_dump()
    try:
        return model.model_validate(value)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(part) for part in first["loc"])
        raise InvalidInput(f"{where}: {first['msg']}" if where else first["msg"])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def page_offset(last_key: Any) -> int:
    return last_key if isinstance(last_key, int) and not isinstance(last_key, bool) and last_key > 0 else 0


class Backend(ABC):
    name = "base"

    def __init__(self, storage: Optional[LocalStorage] = None):
        self.storage = storage if storage is not None else LocalStorage()
        self.session = AuthSession()
        self._timer: Optional[threading.Timer] = None

    @classmethod
    @abstractmethod
    def from_config(cls, **options) -> "Backend":
        ...

    # Lifecycle

    def start(self, delay: float = 0.0) -> None:
        """Restore the previous session in the background."""
        self._timer = threading.Timer(delay, self.initialize)
        self._timer.daemon = True
        self._timer.start()

    def initialize(self) -> None:
        """Restore the stored session. Always completes, anonymous on failure."""
        user = None
        try:
            user = self._restore_session()
        except ServiceError as e:
            logger.warning("%s backend could not restore session: %s", self.name, e.message)
        except Exception:
            logger.exception("%s backend failed while restoring session", self.name)
        self.session.complete_initialization(user)

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()

    @property
    def current_user(self) -> Optional[User]:
        return self.session.current_user

    @abstractmethod
    def _restore_session(self) -> Optional[User]:
        ...

    # Identity

    @abstractmethod
    def create_account(self, email: str, password: str, fullname: Optional[str] = None) -> User:
        ...

    @abstractmethod
    def sign_in(self, email: str, password: str) -> User:
        ...

    @abstractmethod
    def sign_out(self) -> None:
        ...

    def sign_in_with_google(self) -> User:
        return self._social_sign_in("google.com")

    def sign_in_with_facebook(self) -> User:
        return self._social_sign_in("facebook.com")

    def sign_in_with_github(self) -> User:
        return self._social_sign_in("github.com")

    def _social_sign_in(self, provider: str) -> User:
        raise NotSupported(f"{provider} sign-in is not available with the {self.name} backend")

    def password_reset(self, email: str) -> None:
        logger.info("Password reset requested for %s; nothing to send with the %s backend", email, self.name)

    def password_update(self, password: str) -> None:
        logger.info("Password update ignored by the %s backend", self.name)

    # Account

    @abstractmethod
    def get_user(self, user_id: str) -> Profile:
        ...

    @abstractmethod
    def update_profile(self, user_id: str, fields: Any) -> Profile:
        ...

    @abstractmethod
    def get_basket(self, user_id: str) -> List[BasketItem]:
        ...

    @abstractmethod
    def save_basket_items(self, items: List[Any], user_id: str) -> List[BasketItem]:
        ...

    # Catalog

    @abstractmethod
    def get_single_product(self, product_id: str) -> Product:
        ...

    @abstractmethod
    def get_products(self, last_key: Optional[int] = None) -> ProductPage:
        ...

    @abstractmethod
    def search_products(self, query: str, limit: int = config.PAGE_SIZE) -> List[Product]:
        ...

    @abstractmethod
    def get_featured_products(self, count: int = config.PAGE_SIZE) -> List[Product]:
        ...

    @abstractmethod
    def get_recommended_products(self, count: int = config.PAGE_SIZE) -> List[Product]:
        ...

    @abstractmethod
    def add_product(self, product_id: Optional[str], product: Any) -> str:
        ...

    @abstractmethod
    def edit_product(self, product_id: str, product: Any) -> Product:
        ...

    @abstractmethod
    def remove_product(self, product_id: str) -> None:
        ...

    def generate_key(self) -> str:
        return uuid.uuid4().hex

    # Orders

    @abstractmethod
    def create_order(self, order: Any) -> Order:
        ...

    @abstractmethod
    def get_orders(self, user_id: str) -> List[Order]:
        ...

    # Images

    def store_image(self, image_id: str, folder: str, data: bytes, content_type: str = "image/png") -> str:
        if not data:
            return ""
        return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"

    def delete_image(self, image_id: str) -> None:
        pass

    # Policy for adapters without a server in front of them

    def _require_user(self) -> User:
        user = self.session.current_user
        if user is None:
            raise Unauthorized("Sign in required")
        return user

    def _require_admin(self) -> User:
        user = self._require_user()
        if user.role != "ADMIN":
            raise Forbidden("Admins only")
        return user

    def _require_owner(self, user_id: str) -> User:
        user = self._require_user()
        if user.role != "ADMIN" and user.id != str(user_id):
            raise Forbidden("Not allowed to access another user")
        return user


def create_service(backend: Optional[str] = None, start: bool = True, **options) -> Backend:
    """Build the adapter named by ``backend`` (default ``SHOP_BACKEND``)."""
    name = (backend or config.SHOP_BACKEND).lower()
    if name == "http":
        from http_backend import HttpBackend as cls
    elif name == "local":
        from local_backend import LocalBackend as cls
    elif name == "cloud":
        from cloud_backend import CloudBackend as cls
    else:
        raise ValueError(f"Unknown backend {name!r}")
    service = cls.from_config(**options)
    logger.info("Using the %s backend", service.name)
    if start:
        service.start()
    return service
