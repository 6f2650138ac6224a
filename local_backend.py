"""
Local storage backend

Keeps every record in ``LocalStorage`` under four keys (``users``,
``baskets``, ``products``, ``orders``) plus ``session`` for the signed-in
user id and ``next_key`` for the key counter. Nothing leaves the machine,
so password reset and update are accepted and ignored.
"""

import logging
from typing import Any, Dict, List, Optional

import config
from client import Backend, coerce, page_offset, utcnow
from errors import Conflict, InvalidCredentials, InvalidInput, NotFound
from schemas import BasketItem, Order, OrderIn, Product, ProductIn, ProductPage, Profile, ProfileUpdate, SigninInput, SignupInput, User
from security import hash_password, verify_password
from storage import LocalStorage

logger = logging.getLogger(__name__)


class LocalBackend(Backend):
    name = "local"

    @classmethod
    def from_config(cls, **options) -> "LocalBackend":
        storage = options.pop("storage", None) or LocalStorage(config.LOCAL_STORAGE_PATH)
        return cls(storage=storage)

    def _users(self) -> Dict[str, Dict[str, Any]]:
        return self.storage.get("users", {})

    def _baskets(self) -> Dict[str, List[Dict[str, Any]]]:
        return self.storage.get("baskets", {})

    def _products(self) -> List[Product]:
        return [Product.model_validate(p) for p in self.storage.get("products", {}).values()]

    def _orders(self) -> List[Dict[str, Any]]:
        return self.storage.get("orders", [])

    def generate_key(self) -> str:
        # Zero-padded counter: keys sort in creation order and are never reused.
        key = self.storage.get("next_key", 1)
        self.storage.set("next_key", key + 1)
        return f"{key:010d}"

    def _restore_session(self) -> Optional[User]:
        uid = self.storage.get("session")
        record = self._users().get(uid) if uid else None
        return User.model_validate(record) if record else None

    # Identity

    def create_account(self, email: str, password: str, fullname: Optional[str] = None) -> User:
        data = coerce(SignupInput, {"email": email, "password": password, "fullname": fullname})
        users = self._users()
        if any(u["email"] == data.email for u in users.values()):
            raise Conflict("Email already in use")
        user = User(
            id=self.generate_key(),
            email=data.email,
            role=config.role_for_email(data.email),
            fullname=data.fullname or "User",
            date_joined=utcnow(),
        )
        users[user.id] = {**user.model_dump(mode="json"), "password_hash": hash_password(data.password)}
        baskets = self._baskets()
        baskets[user.id] = []
        self.storage.update({"users": users, "baskets": baskets, "session": user.id})
        logger.info("Created local account %s", user.email)
        self.session.set_user(user)
        return user

    def sign_in(self, email: str, password: str) -> User:
        try:
            data = coerce(SigninInput, {"email": email, "password": password})
        except InvalidInput:
            raise InvalidCredentials("Invalid email or password")
        record = next((u for u in self._users().values() if u["email"] == data.email), None)
        if record is None or not verify_password(data.password, record["password_hash"]):
            raise InvalidCredentials("Invalid email or password")
        user = User.model_validate(record)
        self.storage.set("session", user.id)
        self.session.set_user(user)
        return user

    def sign_out(self) -> None:
        self.storage.remove("session")
        self.session.set_user(None)

    # Account

    def get_user(self, user_id: str) -> Profile:
        self._require_owner(user_id)
        record = self._users().get(str(user_id))
        if record is None:
            raise NotFound("User not found")
        return Profile(**User.model_validate(record).model_dump(), basket=self._baskets().get(str(user_id), []))

    def update_profile(self, user_id: str, fields: Any) -> Profile:
        self._require_owner(user_id)
        data = coerce(ProfileUpdate, fields)
        users = self._users()
        record = users.get(str(user_id))
        if record is None:
            raise NotFound("User not found")
        record.update(data.model_dump(mode="json"))
        self.storage.set("users", users)
        user = User.model_validate(record)
        if self.current_user is not None and self.current_user.id == user.id:
            self.session.set_user(user)
        return self.get_user(user_id)

    def get_basket(self, user_id: str) -> List[BasketItem]:
        self._require_owner(user_id)
        baskets = self._baskets()
        if str(user_id) not in baskets:
            raise NotFound("Basket not found")
        return [BasketItem.model_validate(item) for item in baskets[str(user_id)]]

    def save_basket_items(self, items: List[Any], user_id: str) -> List[BasketItem]:
        self._require_owner(user_id)
        basket = [coerce(BasketItem, item) for item in items]
        baskets = self._baskets()
        if str(user_id) not in baskets:
            raise NotFound("Basket not found")
        baskets[str(user_id)] = [item.model_dump(mode="json") for item in basket]
        self.storage.set("baskets", baskets)
        return basket

    # Catalog

    def get_single_product(self, product_id: str) -> Product:
        record = self.storage.get("products", {}).get(str(product_id))
        if record is None:
            raise NotFound("Product not found")
        return Product.model_validate(record)

    def get_products(self, last_key: Optional[int] = None) -> ProductPage:
        offset = page_offset(last_key)
        products = sorted(self._products(), key=lambda p: p.id)
        page = products[offset:offset + config.PAGE_SIZE]
        return ProductPage.for_offset(page, offset, config.PAGE_SIZE, len(products))

    def search_products(self, query: str, limit: int = config.PAGE_SIZE) -> List[Product]:
        needle = (query or "").lower()
        found = [p for p in self._products() if needle in p.name_lower]
        return sorted(found, key=lambda p: (p.name_lower, p.id))[:limit]

    def get_featured_products(self, count: int = config.PAGE_SIZE) -> List[Product]:
        featured = [p for p in self._products() if p.is_featured]
        return sorted(featured, key=lambda p: (p.date_added, p.id), reverse=True)[:count]

    def get_recommended_products(self, count: int = config.PAGE_SIZE) -> List[Product]:
        return sorted(self._products(), key=lambda p: (p.date_added, p.id), reverse=True)[:count]

    def add_product(self, product_id: Optional[str], product: Any) -> str:
        self._require_admin()
        data = coerce(ProductIn, product)
        products = self.storage.get("products", {})
        product_id = str(product_id or self.generate_key())
        if product_id in products:
            raise Conflict("Product id already in use")
        products[product_id] = Product.from_input(product_id, data, utcnow()).model_dump(mode="json")
        self.storage.set("products", products)
        return product_id

    def edit_product(self, product_id: str, product: Any) -> Product:
        self._require_admin()
        data = coerce(ProductIn, product)
        products = self.storage.get("products", {})
        if str(product_id) not in products:
            raise NotFound("Product not found")
        existing = Product.model_validate(products[str(product_id)])
        updated = Product.from_input(existing.id, data, existing.date_added)
        products[existing.id] = updated.model_dump(mode="json")
        self.storage.set("products", products)
        return updated

    def remove_product(self, product_id: str) -> None:
        self._require_admin()
        products = self.storage.get("products", {})
        if products.pop(str(product_id), None) is not None:
            self.storage.set("products", products)

    # Orders

    def create_order(self, order: Any) -> Order:
        user = self._require_user()
        data = coerce(OrderIn, order)
        user_id = data.user_id or user.id
        self._require_owner(user_id)
        if user_id not in self._users():
            raise NotFound("User not found")
        created = Order(
            id=self.generate_key(),
            user_id=user_id,
            date_created=utcnow(),
            **data.model_dump(exclude={"user_id"}),
        )
        orders = self._orders()
        orders.append(created.model_dump(mode="json"))
        self.storage.set("orders", orders)
        return created

    def get_orders(self, user_id: str) -> List[Order]:
        self._require_owner(user_id)
        mine = [Order.model_validate(o) for o in reversed(self._orders()) if o["user_id"] == str(user_id)]
        return sorted(mine, key=lambda o: o.date_created, reverse=True)
