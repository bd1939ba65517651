from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from storefront.shared.security_config import sanitize_input

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    slug: str = Field(..., min_length=1, pattern="^[a-z0-9-]+$")

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CategoryResponse(CategoryCreate):
    id: str
    is_active: bool = True

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., max_length=2000)
    price: Decimal = Field(..., ge=0, decimal_places=2)
    original_price: Optional[Decimal] = Field(None, ge=0)
    images: List[str] = []
    category: str
    brand: Optional[str] = None
    tags: List[str] = []
    stock_quantity: int = Field(0, ge=0)
    is_featured: bool = False

    @field_validator('name', 'description', 'brand')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

    @field_validator('category')
    def normalise_category(cls, v):
        return sanitize_input(v).lower()

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    original_price: Optional[Decimal] = Field(None, ge=0)
    images: Optional[List[str]] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    tags: Optional[List[str]] = None
    stock_quantity: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None

    @field_validator('name', 'description', 'brand')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class StockAdjustment(BaseModel):
    delta: int = Field(..., description="Relative change applied to stock_quantity")
    reason: Optional[str] = Field(None, max_length=200)

class ProductResponse(BaseModel):
    id: str
    name: str
    description: str
    price: Decimal
    original_price: Optional[Decimal] = None
    images: List[str] = []
    category: str
    brand: Optional[str] = None
    tags: List[str] = []
    stock_quantity: int
    in_stock: bool
    availability_status: str
    is_active: bool
    is_featured: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None

class ProductListResponse(BaseModel):
    products: List[ProductResponse]
    total: int
    page: int
    limit: int
