"""
Relational store

SQLAlchemy tables for users, products, baskets and orders. Nested fields are
JSON columns; rows are turned into the typed records of ``schemas`` before
they leave this module.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, List, Optional, Tuple

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, create_engine, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from config import DATABASE_URL, DEFAULT_AVATAR
from errors import Conflict, InvalidInput, NotFound
from schemas import BasketItem, Order, OrderIn, Product, ProductIn, ProductPage, Profile, ProfileUpdate, User

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    fullname: Mapped[str] = mapped_column(Text, default="")
    role: Mapped[str] = mapped_column(String(20), default="USER", nullable=False)
    avatar: Mapped[str] = mapped_column(Text, default=DEFAULT_AVATAR)
    banner: Mapped[str] = mapped_column(Text, default=DEFAULT_AVATAR)
    address: Mapped[str] = mapped_column(Text, default="")
    mobile: Mapped[dict] = mapped_column(JSON, default=dict)
    date_joined: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class BasketRow(Base):
    __tablename__ = "baskets"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), primary_key=True)
    basket: Mapped[list] = mapped_column(JSON, default=list)


class ProductRow(Base):
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    name_lower: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    brand: Mapped[str] = mapped_column(Text, default="")
    price: Mapped[float] = mapped_column(Float, default=0)
    max_quantity: Mapped[int] = mapped_column(Integer, default=0)
    description: Mapped[str] = mapped_column(Text, default="")
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    image: Mapped[str] = mapped_column(Text, default="")
    image_collection: Mapped[list] = mapped_column(JSON, default=list)
    date_added: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class OrderRow(Base):
    __tablename__ = "orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    items: Mapped[list] = mapped_column(JSON, default=list)
    amount: Mapped[float] = mapped_column(Float, default=0)
    shipping: Mapped[dict] = mapped_column(JSON, default=dict)
    payment: Mapped[dict] = mapped_column(JSON, default=dict)
    date_created: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# Row -> record conversion

def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _user(row: UserRow) -> User:
    return User(
        id=str(row.id),
        email=row.email,
        role=row.role,
        fullname=row.fullname or "",
        avatar=row.avatar or DEFAULT_AVATAR,
        banner=row.banner or DEFAULT_AVATAR,
        address=row.address or "",
        mobile=row.mobile or {},
        date_joined=_aware(row.date_joined),
    )


def _product(row: ProductRow) -> Product:
    return Product(
        id=str(row.id),
        name=row.name,
        name_lower=row.name_lower,
        brand=row.brand or "",
        price=row.price or 0,
        max_quantity=row.max_quantity or 0,
        description=row.description or "",
        is_featured=bool(row.is_featured),
        quantity=row.quantity or 0,
        image=row.image or "",
        image_collection=row.image_collection or [],
        date_added=_aware(row.date_added),
    )


def _order(row: OrderRow) -> Order:
    return Order(
        id=str(row.id),
        user_id=str(row.user_id),
        items=row.items or [],
        amount=row.amount or 0,
        shipping=row.shipping or {},
        payment=row.payment or {},
        date_created=_aware(row.date_created),
    )


def _key(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _apply_product(row: ProductRow, data: ProductIn) -> None:
    for field, value in data.model_dump(mode="json").items():
        setattr(row, field, value)
    row.name_lower = data.name.lower()


def now() -> datetime:
    return datetime.now(timezone.utc)


class Database:
    """Owns the engine; one instance per application."""

    def __init__(self, url: str = DATABASE_URL):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.url = url
        self.engine = create_engine(url, connect_args=connect_args)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)

    @contextmanager
    def session(self) -> Iterator[Session]:
        with self._sessions.begin() as session:
            yield session

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.info("Database ready at %s", self.engine.url.render_as_string(hide_password=True))

    def dispose(self) -> None:
        self.engine.dispose()

    def seed_products(self, count: int = 24) -> int:
        """Fill an empty catalog with demo products. Returns rows inserted."""
        with self.session() as s:
            if s.scalar(select(func.count()).select_from(ProductRow)):
                return 0
            stamp = now()
            for i in range(1, count + 1):
                row = ProductRow(date_added=stamp - timedelta(hours=i))
                _apply_product(row, ProductIn(
                    name=f"Sample Product {i}",
                    brand="Sample Brand",
                    price=10 + i,
                    max_quantity=10,
                    description="Local demo product",
                    is_featured=i % 5 == 0,
                    quantity=50,
                    image=f"/static/salt-image-{(i % 9) + 1}.png",
                ))
                s.add(row)
        logger.info("Seeded %d demo products", count)
        return count

    # Users

    def create_user(self, email: str, password_hash: str, fullname: str, role: str) -> User:
        """Insert the account and its empty basket in one transaction."""
        try:
            with self.session() as s:
                row = UserRow(
                    email=email,
                    password_hash=password_hash,
                    fullname=fullname,
                    role=role,
                    avatar=DEFAULT_AVATAR,
                    banner=DEFAULT_AVATAR,
                    address="",
                    mobile={},
                    date_joined=now(),
                )
                s.add(row)
                s.flush()
                s.add(BasketRow(user_id=row.id, basket=[]))
                s.flush()
                user = _user(row)
        except IntegrityError:
            raise Conflict("Email already in use")
        return user

    def get_user(self, user_id: Any) -> User:
        with self.session() as s:
            row = s.get(UserRow, _key(user_id)) if _key(user_id) is not None else None
            if row is None:
                raise NotFound("User not found")
            return _user(row)

    def get_credentials(self, email: str) -> Optional[Tuple[User, str]]:
        with self.session() as s:
            row = s.scalar(select(UserRow).where(UserRow.email == email))
            if row is None:
                return None
            return _user(row), row.password_hash

    def get_profile(self, user_id: Any) -> Profile:
        user = self.get_user(user_id)
        return Profile(**user.model_dump(), basket=self.get_basket(user_id))

    def update_profile(self, user_id: Any, data: ProfileUpdate) -> User:
        with self.session() as s:
            row = s.get(UserRow, _key(user_id)) if _key(user_id) is not None else None
            if row is None:
                raise NotFound("User not found")
            for field, value in data.model_dump(mode="json").items():
                setattr(row, field, value)
            s.flush()
            return _user(row)

    def get_basket(self, user_id: Any) -> List[BasketItem]:
        with self.session() as s:
            row = s.get(BasketRow, _key(user_id)) if _key(user_id) is not None else None
            if row is None:
                raise NotFound("Basket not found")
            return [BasketItem(**item) for item in row.basket or []]

    def save_basket(self, user_id: Any, items: List[BasketItem]) -> List[BasketItem]:
        with self.session() as s:
            row = s.get(BasketRow, _key(user_id)) if _key(user_id) is not None else None
            if row is None:
                raise NotFound("Basket not found")
            row.basket = [item.model_dump(mode="json") for item in items]
        return list(items)

    # Products

    def list_products(self, offset: int, limit: int) -> ProductPage:
        with self.session() as s:
            total = s.scalar(select(func.count()).select_from(ProductRow))
            rows = s.scalars(select(ProductRow).order_by(ProductRow.id).offset(offset).limit(limit))
            return ProductPage.for_offset([_product(r) for r in rows], offset, limit, total)

    def list_featured(self, limit: int) -> List[Product]:
        stmt = (
            select(ProductRow)
            .where(ProductRow.is_featured.is_(True))
            .order_by(ProductRow.date_added.desc(), ProductRow.id.desc())
            .limit(limit)
        )
        with self.session() as s:
            return [_product(r) for r in s.scalars(stmt)]

    def list_recommended(self, limit: int) -> List[Product]:
        stmt = select(ProductRow).order_by(ProductRow.date_added.desc(), ProductRow.id.desc()).limit(limit)
        with self.session() as s:
            return [_product(r) for r in s.scalars(stmt)]

    def search_products(self, query: str, limit: int) -> List[Product]:
        stmt = (
            select(ProductRow)
            .where(ProductRow.name_lower.contains((query or "").lower(), autoescape=True))
            .order_by(ProductRow.name_lower, ProductRow.id)
            .limit(limit)
        )
        with self.session() as s:
            return [_product(r) for r in s.scalars(stmt)]

    def get_product(self, product_id: Any) -> Product:
        with self.session() as s:
            row = s.get(ProductRow, _key(product_id)) if _key(product_id) is not None else None
            if row is None:
                raise NotFound("Product not found")
            return _product(row)

    def create_product(self, data: ProductIn) -> Product:
        with self.session() as s:
            row = ProductRow(date_added=now())
            _apply_product(row, data)
            s.add(row)
            s.flush()
            return _product(row)

    def update_product(self, product_id: Any, data: ProductIn) -> Product:
        with self.session() as s:
            row = s.get(ProductRow, _key(product_id)) if _key(product_id) is not None else None
            if row is None:
                raise NotFound("Product not found")
            _apply_product(row, data)
            s.flush()
            return _product(row)

    def delete_product(self, product_id: Any) -> None:
        key = _key(product_id)
        if key is None:
            return
        with self.session() as s:
            s.execute(delete(ProductRow).where(ProductRow.id == key))

    # Orders

    def create_order(self, user_id: Any, data: OrderIn) -> Order:
        key = _key(user_id)
        if key is None:
            raise InvalidInput("Invalid user id")
        payload = data.model_dump(mode="json", exclude={"user_id"})
        with self.session() as s:
            if s.get(UserRow, key) is None:
                raise NotFound("User not found")
            row = OrderRow(user_id=key, date_created=now(), **payload)
            s.add(row)
            s.flush()
            return _order(row)

    def list_orders(self, user_id: Any) -> List[Order]:
        key = _key(user_id)
        if key is None:
            return []
        stmt = (
            select(OrderRow)
            .where(OrderRow.user_id == key)
            .order_by(OrderRow.date_created.desc(), OrderRow.id.desc())
        )
        with self.session() as s:
            return [_order(r) for r in s.scalars(stmt)]
