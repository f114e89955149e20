"""
Database Schemas for the E‑commerce API

Each Pydantic model in the first half corresponds to a MongoDB collection.
The collection name is the lowercase of the class name.

Example: class User -> collection "user"

The second half holds the request payloads accepted by the HTTP routes.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["user", "admin"]
PaymentMethod = Literal["COD", "Card"]
PaymentStatus = Literal["Pending", "Paid", "Failed"]
OrderStatus = Literal["Pending", "Processing", "Shipped", "Delivered", "Cancelled"]

# Core domain models

class Address(BaseModel):
    street: str
    city: str
    state: str
    zip: str
    country: Optional[str] = None
    phone: Optional[str] = None
    type: str = "shipping"
    is_default: bool = False

class ShippingAddress(BaseModel):
    street: str
    city: str
    state: str
    zip: str
    phone: str = ""

class User(BaseModel):
    name: str
    email: EmailStr
    hashed_password: str
    role: Role = "user"
    is_blocked: bool = False
    addresses: List[Address] = Field(default_factory=list)

class Category(BaseModel):
    title: str
    slug: str
    description: Optional[str] = None
    image: Optional[str] = None
    icon: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    parent_category: Optional[str] = None
    is_featured: bool = False
    is_active: bool = True
    created_by: Optional[str] = None

class Product(BaseModel):
    title: str
    slug: str
    sku: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: float = Field(..., ge=0)
    discount_price: float = Field(0, ge=0)
    stock: int = Field(..., ge=0)
    images: List[str] = Field(default_factory=list)
    category: str = Field(..., description="Category id")
    tags: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    ratings_average: float = Field(0, ge=0, le=5)
    ratings_count: int = 0
    is_featured: bool = False
    is_active: bool = True
    created_by: Optional[str] = None

class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    price: float = Field(..., ge=0, description="Product price captured when the line was added")
    selected_color: Optional[str] = None
    selected_size: Optional[str] = None

class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)
    total_price: float = 0

class OrderItem(BaseModel):
    product_id: str
    title: str
    quantity: int = Field(1, ge=1)
    price: float = Field(..., ge=0)
    selected_color: Optional[str] = None
    selected_size: Optional[str] = None

class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = "COD"
    payment_status: PaymentStatus = "Pending"
    order_status: OrderStatus = "Pending"
    total_price: float
    shipping_price: float = 0
    order_number: str

class Review(BaseModel):
    user_id: str
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str
    is_approved: bool = False
    images: List[str] = Field(default_factory=list)

class Wishlist(BaseModel):
    user_id: str
    products: List[str] = Field(default_factory=list)

# Request payloads

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)

class ForgotPasswordRequest(BaseModel):
    email: EmailStr

class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)

class ChangePasswordRequest(BaseModel):
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)

class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    addresses: Optional[List[Address]] = None

class UserAdminUpdate(ProfileUpdate):
    role: Optional[Role] = None
    is_blocked: Optional[bool] = None

class CategoryIn(BaseModel):
    title: str = Field(..., min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    icon: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    parent_category: Optional[str] = Field(None, description="Parent category id")
    is_featured: bool = False
    is_active: bool = True

class CategoryUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    icon: Optional[str] = None
    tags: Optional[List[str]] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    parent_category: Optional[str] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None

class ProductIn(BaseModel):
    title: str = Field(..., min_length=1)
    slug: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: float = Field(..., ge=0)
    discount_price: float = Field(0, ge=0)
    stock: int = Field(..., ge=0)
    images: List[str] = Field(default_factory=list)
    category: str = Field(..., description="Category id or category slug")
    tags: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    is_featured: bool = False
    is_active: bool = True

class ProductUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    sizes: Optional[List[str]] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None

class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    selected_color: Optional[str] = None
    selected_size: Optional[str] = None

class UpdateCartItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    selected_color: Optional[str] = None
    selected_size: Optional[str] = None

class CheckoutRequest(BaseModel):
    payment_method: PaymentMethod
    shipping_address: Optional[ShippingAddress] = Field(
        None, description="If empty, the default (or first) saved address is used"
    )

class OrderStatusUpdate(BaseModel):
    status: OrderStatus

class ReviewIn(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)
    images: List[str] = Field(default_factory=list)

class ReviewStatusUpdate(BaseModel):
    is_approved: bool

class WishlistToggle(BaseModel):
    product_id: str
