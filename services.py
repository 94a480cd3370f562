"""
Cart and checkout use cases.

Both services are built around a pymongo ``Database`` handed to them by the
caller and are scoped to one authenticated user per call. A cart stores
``{item_id, quantity}`` lines plus a cached ``total`` that is recomputed from
current item prices on every mutation.

There is no locking: two concurrent mutations of the same cart can lose an
update. Checkout inserts the order before deleting the cart, so a failure in
between leaves a duplicate-prone stale cart instead of a lost order.
"""

from typing import Any, Dict, Iterable, List, Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING
from pymongo.database import Database

from database import create_document, get_documents, now, to_object_id
from errors import InvalidRequest, NotFound
from schemas import Cart, Order

logger = structlog.get_logger(__name__)

# Largest integer BSON can store
MAX_QUANTITY = 2 ** 63 - 1


def empty_cart() -> Dict[str, Any]:
    return {"items": [], "total": 0}


def _find_line(lines: List[Dict[str, Any]], item_id: ObjectId) -> Optional[int]:
    for index, line in enumerate(lines):
        if line["item_id"] == item_id:
            return index
    return None


class CartService:
    def __init__(self, db: Database):
        self.db = db
        self.carts = db["cart"]
        self.items = db["item"]

    # --------------------- Queries ---------------------

    def get(self, user_id: ObjectId) -> Dict[str, Any]:
        return self.carts.find_one({"user_id": user_id}) or empty_cart()

    def get_detailed(self, user_id: ObjectId) -> Dict[str, Any]:
        """Like ``get``, with each line carrying its item document (None once the item is gone)."""
        cart = self.get(user_id)
        if not cart["items"]:
            return cart

        docs = self._load_items(line["item_id"] for line in cart["items"])
        detailed = dict(cart)
        detailed["items"] = [dict(line, item=docs.get(line["item_id"])) for line in cart["items"]]
        return detailed

    # --------------------- Commands ---------------------

    def add_item(self, user_id: ObjectId, item_id: Optional[str], quantity: Optional[int]) -> Dict[str, Any]:
        if not item_id or quantity is None or quantity <= 0:
            raise InvalidRequest("Invalid item or quantity")
        oid = to_object_id(item_id, "itemId")

        cart = self.carts.find_one({"user_id": user_id})
        if cart is None:
            cart = Cart(user_id=user_id).model_dump()

        index = _find_line(cart["items"], oid)
        if index is None:
            new_quantity = quantity
        else:
            new_quantity = cart["items"][index]["quantity"] + quantity
        if new_quantity > MAX_QUANTITY:
            raise InvalidRequest("Quantity too large")

        if index is None:
            cart["items"].append({"item_id": oid, "quantity": new_quantity})
        else:
            cart["items"][index]["quantity"] = new_quantity

        saved = self._save(cart)
        logger.info(
            "Item added to cart",
            user_id=str(user_id),
            item_id=str(oid),
            quantity=new_quantity,
            total=saved["total"],
        )
        return saved

    def update_item(self, user_id: ObjectId, item_id: Optional[str], quantity: int) -> Dict[str, Any]:
        if not item_id:
            raise InvalidRequest("Missing itemId")
        if quantity > MAX_QUANTITY:
            raise InvalidRequest("Quantity too large")

        cart = self.carts.find_one({"user_id": user_id})
        if cart is None:
            raise NotFound("Cart not found")

        try:
            oid = ObjectId(str(item_id))
        except InvalidId:
            # a malformed id can never match a stored line
            oid = None
        index = _find_line(cart["items"], oid) if oid is not None else None
        if index is None:
            raise NotFound("Item not in cart")

        if quantity <= 0:
            del cart["items"][index]
        else:
            cart["items"][index]["quantity"] = quantity

        saved = self._save(cart)
        logger.info(
            "Cart item updated",
            user_id=str(user_id),
            item_id=str(oid),
            quantity=max(quantity, 0),
            total=saved["total"],
        )
        return saved

    def clear(self, user_id: ObjectId) -> None:
        result = self.carts.delete_one({"user_id": user_id})
        logger.info("Cart cleared", user_id=str(user_id), existed=bool(result.deleted_count))

    # --------------------- Internals ---------------------

    def _load_items(self, item_ids: Iterable[ObjectId]) -> Dict[ObjectId, Dict[str, Any]]:
        distinct = list(set(item_ids))
        if not distinct:
            return {}
        return {doc["_id"]: doc for doc in self.items.find({"_id": {"$in": distinct}})}

    def recompute_total(self, lines: List[Dict[str, Any]]) -> float:
        docs = self._load_items(line["item_id"] for line in lines)
        total = 0.0
        for line in lines:
            doc = docs.get(line["item_id"])
            price = (doc.get("price") or 0) if doc else 0
            total += price * line["quantity"]
        return total

    def _save(self, cart: Dict[str, Any]) -> Dict[str, Any]:
        cart["total"] = self.recompute_total(cart["items"])
        timestamp = now()
        cart["updated_at"] = timestamp
        if "_id" in cart:
            self.carts.replace_one({"_id": cart["_id"]}, cart)
        else:
            cart["created_at"] = timestamp
            cart["_id"] = self.carts.insert_one(cart).inserted_id
        return cart


class CheckoutService:
    def __init__(self, db: Database):
        self.db = db

    def checkout(
        self,
        user_id: ObjectId,
        shipping_address: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> Dict[str, Any]:
        cart = self.db["cart"].find_one({"user_id": user_id})
        if not cart or not cart.get("items"):
            raise InvalidRequest("Cart is empty")

        order = Order(
            user_id=user_id,
            items=cart["items"],
            total=cart.get("total", 0),
            shipping_address=shipping_address,
            payment_method=payment_method,
        )
        # The order must exist before the cart goes away
        order_id = create_document(self.db, "order", order)
        self.db["cart"].delete_one({"_id": cart["_id"]})

        logger.info("Order placed", user_id=str(user_id), order_id=str(order_id), total=order.total)
        return self.db["order"].find_one({"_id": order_id})

    def list_orders(self, user_id: ObjectId) -> List[Dict[str, Any]]:
        return get_documents(self.db, "order", {"user_id": user_id}, sort=[("created_at", DESCENDING)])
