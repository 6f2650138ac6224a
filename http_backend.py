import logging
from typing import Any, Dict, List, Optional

import requests

import config
from client import Backend, coerce, page_offset
from errors import BackendUnavailable, InvalidCredentials, InvalidInput, NotFound, Unauthorized, error_for_status
from schemas import BasketItem, OrderIn, Order, Product, ProductIn, ProductPage, Profile, ProfileUpdate, User
from storage import LocalStorage

logger = logging.getLogger(__name__)


def _message(response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    return body.get("message") if isinstance(body, dict) else None


class HttpBackend(Backend):
    """Talks to the shop API; the bearer token lives in local storage."""

    name = "http"

    def __init__(self, base_url: str = config.API_BASE_URL, http=None, storage: Optional[LocalStorage] = None, timeout: Optional[float] = config.HTTP_TIMEOUT):
        super().__init__(storage)
        self.base_url = base_url.rstrip("/")
        self.http = http if http is not None else requests.Session()
        self.timeout = timeout

    @classmethod
    def from_config(cls, **options) -> "HttpBackend":
        storage = options.pop("storage", None) or LocalStorage(config.LOCAL_STORAGE_PATH)
        return cls(storage=storage, **options)

    @property
    def token(self) -> Optional[str]:
        return self.storage.get("token")

    def _request(self, method: str, path: str, auth: bool = False, json: Any = None, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"headers": {}}
        if auth and self.token:
            kwargs["headers"]["Authorization"] = f"Bearer {self.token}"
        if json is not None:
            kwargs["json"] = json
        if params:
            kwargs["params"] = params
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        try:
            response = self.http.request(method, self.base_url + path, **kwargs)
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise BackendUnavailable(f"Could not reach {self.base_url}")
        if response.status_code >= 400:
            raise error_for_status(response.status_code, _message(response))
        try:
            return response.json()
        except ValueError:
            logger.warning("%s %s returned a non-JSON body", method, path)
            raise BackendUnavailable(f"Unexpected response from {self.base_url}")

    def _signed_in(self, data: Dict[str, Any]) -> User:
        user = User.model_validate(data["user"])
        self.storage.set("token", data["token"])
        self.session.set_user(user)
        return user

    def _restore_session(self) -> Optional[User]:
        if not self.token:
            return None
        try:
            data = self._request("GET", "/auth/me", auth=True)
        except (Unauthorized, NotFound):
            self.storage.remove("token")
            return None
        return User.model_validate(data["user"])

    # Identity

    def create_account(self, email: str, password: str, fullname: Optional[str] = None) -> User:
        data = self._request("POST", "/auth/signup", json={"email": email, "password": password, "fullname": fullname})
        return self._signed_in(data)

    def sign_in(self, email: str, password: str) -> User:
        try:
            data = self._request("POST", "/auth/signin", json={"email": email, "password": password})
        except InvalidInput as e:
            raise InvalidCredentials(e.message)
        return self._signed_in(data)

    def sign_out(self) -> None:
        self.storage.remove("token")
        self.session.set_user(None)

    # Account

    def get_user(self, user_id: str) -> Profile:
        data = self._request("GET", f"/users/{user_id}", auth=True)
        return Profile.model_validate(data["profile"])

    def update_profile(self, user_id: str, fields: Any) -> Profile:
        body = coerce(ProfileUpdate, fields).model_dump(mode="json")
        data = self._request("PUT", f"/users/{user_id}", auth=True, json=body)
        profile = Profile.model_validate(data["profile"])
        current = self.current_user
        if current is not None and current.id == profile.id:
            self.session.set_user(User.model_validate(profile.model_dump()))
        return profile

    def get_basket(self, user_id: str) -> List[BasketItem]:
        data = self._request("GET", f"/users/{user_id}/basket", auth=True)
        return [BasketItem.model_validate(item) for item in data["basket"]]

    def save_basket_items(self, items: List[Any], user_id: str) -> List[BasketItem]:
        basket = [coerce(BasketItem, item).model_dump(mode="json") for item in items]
        data = self._request("PUT", f"/users/{user_id}/basket", auth=True, json={"basket": basket})
        return [BasketItem.model_validate(item) for item in data["basket"]]

    # Catalog

    def get_single_product(self, product_id: str) -> Product:
        if not str(product_id).isdigit():
            raise NotFound("Product not found")
        data = self._request("GET", f"/products/{product_id}")
        return Product.model_validate(data["product"])

    def get_products(self, last_key: Optional[int] = None) -> ProductPage:
        data = self._request("GET", "/products", params={"offset": page_offset(last_key), "limit": config.PAGE_SIZE})
        return ProductPage.model_validate(data)

    def search_products(self, query: str, limit: int = config.PAGE_SIZE) -> List[Product]:
        data = self._request("GET", "/products/search", params={"q": query or "", "limit": limit})
        return [Product.model_validate(p) for p in data["products"]]

    def get_featured_products(self, count: int = config.PAGE_SIZE) -> List[Product]:
        data = self._request("GET", "/products/featured", params={"limit": count})
        return [Product.model_validate(p) for p in data["products"]]

    def get_recommended_products(self, count: int = config.PAGE_SIZE) -> List[Product]:
        data = self._request("GET", "/products/recommended", params={"limit": count})
        return [Product.model_validate(p) for p in data["products"]]

    def add_product(self, product_id: Optional[str], product: Any) -> str:
        # The server assigns the id; a pre-generated key is not used.
        body = coerce(ProductIn, product).model_dump(mode="json")
        data = self._request("POST", "/products", auth=True, json=body)
        return data["id"]

    def edit_product(self, product_id: str, product: Any) -> Product:
        if not str(product_id).isdigit():
            raise NotFound("Product not found")
        body = coerce(ProductIn, product).model_dump(mode="json")
        data = self._request("PUT", f"/products/{product_id}", auth=True, json=body)
        return Product.model_validate(data["product"])

    def remove_product(self, product_id: str) -> None:
        if not str(product_id).isdigit():
            return
        self._request("DELETE", f"/products/{product_id}", auth=True)

    # Orders

    def create_order(self, order: Any) -> Order:
        body = coerce(OrderIn, order).model_dump(mode="json")
        data = self._request("POST", "/orders", auth=True, json=body)
        return Order.model_validate(data["order"])

    def get_orders(self, user_id: str) -> List[Order]:
        data = self._request("GET", "/orders", auth=True, params={"userId": user_id})
        return [Order.model_validate(o) for o in data["orders"]]
