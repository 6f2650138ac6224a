"""
Managed document-database backend

Stores accounts, catalog, baskets, orders and uploaded images in MongoDB
collections. Keys are ObjectId strings so a product key can be generated
before the write. Only the signed-in user id is kept locally.
"""

import logging
import re
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from bson import Binary, ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from client import Backend, coerce, page_offset, utcnow
from errors import BackendUnavailable, Conflict, InvalidCredentials, InvalidInput, NotFound
from schemas import BasketItem, Order, OrderIn, Product, ProductIn, ProductPage, Profile, ProfileUpdate, SigninInput, SignupInput, User
from security import hash_password, verify_password
from storage import LocalStorage

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("date_added", DESCENDING), ("_id", DESCENDING)]


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    _id = doc.pop("_id", None)
    doc["id"] = str(_id) if isinstance(_id, ObjectId) else _id
    doc.pop("password_hash", None)
    return doc


class CloudBackend(Backend):
    name = "cloud"

    def __init__(self, db, storage: Optional[LocalStorage] = None, media_base_url: str = config.MEDIA_BASE_URL):
        super().__init__(storage)
        self.db = db
        self.media_base_url = media_base_url.rstrip("/")
        with self._guard():
            self.db["users"].create_index("email", unique=True)

    @classmethod
    def from_config(cls, **options) -> "CloudBackend":
        db = options.pop("db", None)
        if db is None:
            client = MongoClient(options.pop("mongo_url", config.MONGO_URL))
            db = client[options.pop("database_name", config.DATABASE_NAME)]
        storage = options.pop("storage", None) or LocalStorage(config.LOCAL_STORAGE_PATH)
        return cls(db, storage=storage, **options)

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except PyMongoError as e:
            logger.warning("Managed backend error: %s", e)
            raise BackendUnavailable(f"Managed backend error: {e}")

    def generate_key(self) -> str:
        return str(ObjectId())

    def _user(self, user_id: str) -> Optional[User]:
        with self._guard():
            doc = self.db["users"].find_one({"_id": str(user_id)})
        return User.model_validate(serialize_doc(doc)) if doc else None

    def _restore_session(self) -> Optional[User]:
        uid = self.storage.get("session")
        return self._user(uid) if uid else None

    # Identity

    def create_account(self, email: str, password: str, fullname: Optional[str] = None) -> User:
        data = coerce(SignupInput, {"email": email, "password": password, "fullname": fullname})
        user = User(
            id=self.generate_key(),
            email=data.email,
            role=config.role_for_email(data.email),
            fullname=data.fullname or "User",
            date_joined=utcnow(),
        )
        doc = {**user.model_dump(exclude={"id"}), "_id": user.id, "password_hash": hash_password(data.password)}
        with self._guard():
            if self.db["users"].find_one({"email": user.email}):
                raise Conflict("Email already in use")
            try:
                self.db["users"].insert_one(doc)
            except DuplicateKeyError:
                raise Conflict("Email already in use")
            try:
                self.db["baskets"].insert_one({"_id": user.id, "basket": []})
            except PyMongoError as e:
                self.db["users"].delete_one({"_id": user.id})
                logger.error("Basket creation failed for %s, account removed: %s", user.email, e)
                raise BackendUnavailable("Signup failed while creating the basket")
        self.storage.set("session", user.id)
        logger.info("Created account %s", user.email)
        self.session.set_user(user)
        return user

    def sign_in(self, email: str, password: str) -> User:
        try:
            data = coerce(SigninInput, {"email": email, "password": password})
        except InvalidInput:
            raise InvalidCredentials("Invalid email or password")
        with self._guard():
            doc = self.db["users"].find_one({"email": data.email})
        if not doc or not verify_password(data.password, doc.get("password_hash", "")):
            raise InvalidCredentials("Invalid email or password")
        user = User.model_validate(serialize_doc(doc))
        self.storage.set("session", user.id)
        self.session.set_user(user)
        return user

    def sign_out(self) -> None:
        self.storage.remove("session")
        self.session.set_user(None)

    def password_update(self, password: str) -> None:
        user = self._require_user()
        if not password:
            raise InvalidInput("Password required")
        with self._guard():
            self.db["users"].update_one({"_id": user.id}, {"$set": {"password_hash": hash_password(password)}})

    # Account

    def get_user(self, user_id: str) -> Profile:
        self._require_owner(user_id)
        user = self._user(user_id)
        if user is None:
            raise NotFound("User not found")
        with self._guard():
            basket = self.db["baskets"].find_one({"_id": str(user_id)}) or {}
        return Profile(**user.model_dump(), basket=basket.get("basket", []))

    def update_profile(self, user_id: str, fields: Any) -> Profile:
        self._require_owner(user_id)
        data = coerce(ProfileUpdate, fields)
        with self._guard():
            res = self.db["users"].update_one({"_id": str(user_id)}, {"$set": data.model_dump()})
        if res.matched_count == 0:
            raise NotFound("User not found")
        profile = self.get_user(user_id)
        if self.current_user is not None and self.current_user.id == profile.id:
            self.session.set_user(User.model_validate(profile.model_dump()))
        return profile

    def get_basket(self, user_id: str) -> List[BasketItem]:
        self._require_owner(user_id)
        with self._guard():
            doc = self.db["baskets"].find_one({"_id": str(user_id)})
        if doc is None:
            raise NotFound("Basket not found")
        return [BasketItem.model_validate(item) for item in doc.get("basket", [])]

    def save_basket_items(self, items: List[Any], user_id: str) -> List[BasketItem]:
        self._require_owner(user_id)
        basket = [coerce(BasketItem, item) for item in items]
        with self._guard():
            res = self.db["baskets"].update_one(
                {"_id": str(user_id)},
                {"$set": {"basket": [item.model_dump() for item in basket]}},
            )
        if res.matched_count == 0:
            raise NotFound("Basket not found")
        return basket

    # Catalog

    def _find_products(self, query: Dict[str, Any], sort, limit: int, skip: int = 0) -> List[Product]:
        with self._guard():
            cursor = self.db["products"].find(query).sort(sort).skip(skip).limit(limit)
            return [Product.model_validate(serialize_doc(d)) for d in cursor]

    def get_single_product(self, product_id: str) -> Product:
        with self._guard():
            doc = self.db["products"].find_one({"_id": str(product_id)})
        if not doc:
            raise NotFound("Product not found")
        return Product.model_validate(serialize_doc(doc))

    def get_products(self, last_key: Optional[int] = None) -> ProductPage:
        offset = page_offset(last_key)
        with self._guard():
            total = self.db["products"].count_documents({})
        products = self._find_products({}, [("_id", ASCENDING)], config.PAGE_SIZE, skip=offset)
        return ProductPage.for_offset(products, offset, config.PAGE_SIZE, total)

    def search_products(self, query: str, limit: int = config.PAGE_SIZE) -> List[Product]:
        pattern = re.escape((query or "").lower())
        return self._find_products({"name_lower": {"$regex": pattern}}, [("name_lower", ASCENDING), ("_id", ASCENDING)], limit)

    def get_featured_products(self, count: int = config.PAGE_SIZE) -> List[Product]:
        return self._find_products({"is_featured": True}, NEWEST_FIRST, count)

    def get_recommended_products(self, count: int = config.PAGE_SIZE) -> List[Product]:
        return self._find_products({}, NEWEST_FIRST, count)

    def add_product(self, product_id: Optional[str], product: Any) -> str:
        self._require_admin()
        data = coerce(ProductIn, product)
        product_id = str(product_id or self.generate_key())
        created = Product.from_input(product_id, data, utcnow())
        with self._guard():
            try:
                self.db["products"].insert_one({**created.model_dump(exclude={"id"}), "_id": product_id})
            except DuplicateKeyError:
                raise Conflict("Product id already in use")
        logger.info("Product %s added", product_id)
        return product_id

    def edit_product(self, product_id: str, product: Any) -> Product:
        self._require_admin()
        data = coerce(ProductIn, product)
        existing = self.get_single_product(product_id)
        updated = Product.from_input(existing.id, data, existing.date_added)
        with self._guard():
            self.db["products"].replace_one({"_id": existing.id}, {**updated.model_dump(exclude={"id"}), "_id": existing.id})
        return updated

    def remove_product(self, product_id: str) -> None:
        self._require_admin()
        with self._guard():
            self.db["products"].delete_one({"_id": str(product_id)})

    # Orders

    def create_order(self, order: Any) -> Order:
        user = self._require_user()
        data = coerce(OrderIn, order)
        user_id = data.user_id or user.id
        self._require_owner(user_id)
        if self._user(user_id) is None:
            raise NotFound("User not found")
        created = Order(
            id=self.generate_key(),
            user_id=user_id,
            date_created=utcnow(),
            **data.model_dump(exclude={"user_id"}),
        )
        with self._guard():
            self.db["orders"].insert_one({**created.model_dump(exclude={"id"}), "_id": created.id})
        logger.info("Order %s recorded for user %s", created.id, user_id)
        return created

    def get_orders(self, user_id: str) -> List[Order]:
        self._require_owner(user_id)
        with self._guard():
            cursor = self.db["orders"].find({"user_id": str(user_id)}).sort([("date_created", DESCENDING), ("_id", DESCENDING)])
            return [Order.model_validate(serialize_doc(d)) for d in cursor]

    # Images

    def store_image(self, image_id: str, folder: str, data: bytes, content_type: str = "image/png") -> str:
        if not data:
            return ""
        with self._guard():
            self.db["images"].replace_one(
                {"_id": str(image_id)},
                {"_id": str(image_id), "folder": folder, "content_type": content_type, "data": Binary(data)},
                upsert=True,
            )
        return f"{self.media_base_url}/{folder}/{image_id}"

    def delete_image(self, image_id: str) -> None:
        with self._guard():
            self.db["images"].delete_one({"_id": str(image_id)})
