"""
Database Schemas

MongoDB collection schemas as Pydantic models.
Model name is converted to lowercase for the collection name:
- User -> "user" collection
- Item -> "item" collection
- Cart -> "cart" collection
- Order -> "order" collection

Ids are kept as bson ObjectIds inside documents; the API layer turns them
into strings on the way out.
"""

from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field

ORDER_STATUS_PROCESSING = "Processing"


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


class User(Document):
    """
    Users collection schema
    Collection name: "user"
    """
    name: Optional[str] = Field(None, description="Display name")
    email: Optional[str] = Field(None, description="Lowercased email, unique when present")
    password_hash: Optional[str] = Field(None, description="bcrypt hash")
    is_guest: bool = Field(False, description="Guest account without credentials")


class Item(Document):
    """
    Items collection schema
    Collection name: "item"
    """
    title: str = Field(..., description="Item title")
    description: Optional[str] = Field(None, description="Item description")
    price: float = Field(..., ge=0, description="Unit price")
    category: Optional[str] = Field(None, description="Item category")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    stock: int = Field(0, ge=0, description="Units in stock")


class CartLine(Document):
    item_id: ObjectId = Field(..., description="Referenced item _id")
    quantity: int = Field(..., ge=1)


class Cart(Document):
    """
    Carts collection schema
    Collection name: "cart"
    """
    user_id: Optional[ObjectId] = Field(None, description="Owning user _id")
    items: List[CartLine] = Field(default_factory=list)
    total: float = Field(0, ge=0, description="Sum of price * quantity at last mutation")


class Order(Document):
    """
    Orders collection schema
    Collection name: "order"
    """
    user_id: Optional[ObjectId] = Field(None, description="Ordering user _id")
    items: List[CartLine]
    total: float = Field(..., ge=0)
    status: str = Field(ORDER_STATUS_PROCESSING, description="Order status")
    shipping_address: Optional[str] = None
    payment_method: Optional[str] = None
