"""
Shop Schemas

Typed records shared by the HTTP API, the relational store and the client
adapters. Nested structures (mobile contact, basket lines, shipping and
payment details) are modelled here and only turned into JSON at the
persistence edge.
"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_serializer

from config import DEFAULT_AVATAR, normalize_email


class MobileInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    value: str = ""
    country_code: str = ""
    dial_code: str = ""


class LineItem(BaseModel):
    """
    A basket or order line. Lines are opaque to the store: any keys the
    client sends (``productId``/``qty`` as well as ``product_id``/``quantity``)
    are kept, and only the keys that were sent are written back out.
    """
    model_config = ConfigDict(extra="allow")

    product_id: Optional[Union[str, int]] = None
    quantity: Optional[int] = Field(None, ge=0)

    @model_serializer(mode="wrap")
    def as_sent(self, handler):
        data = handler(self)
        declared = type(self).model_fields
        return {k: v for k, v in data.items() if k not in declared or k in self.model_fields_set}


class BasketItem(LineItem):
    pass


class OrderItem(LineItem):
    """Snapshot of a purchased line, independent of later catalog edits."""
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)


class ShippingDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    fullname: str = ""
    email: str = ""
    address: str = ""
    mobile: MobileInfo = Field(default_factory=MobileInfo)
    is_international: bool = False


class PaymentDetails(BaseModel):
    """Stored opaquely, never processed."""
    model_config = ConfigDict(extra="allow")

    type: str = ""
    name: str = ""


# Accounts

class User(BaseModel):
    """Public view of an account. The credential never appears here."""
    id: str
    email: str
    role: str = Field("USER", description="Role: USER | ADMIN")
    fullname: str = ""
    avatar: str = DEFAULT_AVATAR
    banner: str = DEFAULT_AVATAR
    address: str = ""
    mobile: MobileInfo = Field(default_factory=MobileInfo)
    date_joined: datetime


class Profile(User):
    basket: List[BasketItem] = Field(default_factory=list)


class ProfileUpdate(BaseModel):
    """Full replace: anything omitted is reset, not kept."""
    fullname: str = ""
    avatar: str = DEFAULT_AVATAR
    banner: str = DEFAULT_AVATAR
    address: str = ""
    mobile: MobileInfo = Field(default_factory=MobileInfo)

    @field_validator("avatar", "banner", mode="before")
    @classmethod
    def default_image(cls, v):
        return v or DEFAULT_AVATAR

    @field_validator("fullname", "address", mode="before")
    @classmethod
    def empty_text(cls, v):
        return v or ""

    @field_validator("mobile", mode="before")
    @classmethod
    def empty_mobile(cls, v):
        return v or {}


class Identity(BaseModel):
    """Claims carried by a session token."""
    sub: str
    email: str
    role: str = "USER"


class SignupInput(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    fullname: Optional[str] = None


class SigninInput(BaseModel):
    """Malformed credentials fail like wrong ones, so nothing is validated here."""
    email: str = ""
    password: str = ""

    @field_validator("email", mode="before")
    @classmethod
    def normalize(cls, v):
        return "" if v is None else normalize_email(str(v))

    @field_validator("password", mode="before")
    @classmethod
    def as_text(cls, v):
        return "" if v is None else str(v)


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: User


class BasketInput(BaseModel):
    basket: List[BasketItem] = Field(default_factory=list)


# Catalog

class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    brand: str = ""
    price: float = Field(0, ge=0)
    max_quantity: int = Field(0, ge=0)
    description: str = ""
    is_featured: bool = False
    quantity: int = Field(0, ge=0)
    image: str = ""
    image_collection: List[str] = Field(default_factory=list)


class Product(ProductIn):
    id: str
    name_lower: str
    date_added: datetime

    @classmethod
    def from_input(cls, product_id: str, data: ProductIn, date_added: datetime) -> "Product":
        return cls(
            id=product_id,
            name_lower=data.name.lower(),
            date_added=date_added,
            **data.model_dump(),
        )


class ProductPage(BaseModel):
    products: List[Product]
    last_key: Optional[int] = None
    total: int

    @classmethod
    def for_offset(cls, products: List[Product], offset: int, page_size: int, total: int) -> "ProductPage":
        next_offset = offset + page_size
        return cls(products=products, last_key=next_offset if next_offset < total else None, total=total)


# Orders

class OrderIn(BaseModel):
    user_id: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)
    amount: float = Field(0, ge=0)
    shipping: ShippingDetails = Field(default_factory=ShippingDetails)
    payment: PaymentDetails = Field(default_factory=PaymentDetails)


class Order(OrderIn):
    id: str
    user_id: str
    date_created: datetime
