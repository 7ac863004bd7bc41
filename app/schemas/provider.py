from datetime import datetime
from typing import Dict, List, Optional
from app.schemas.base import CamelModel
from app.schemas.user import UserResponse

class RepairmanCreate(CamelModel):
    skills: List[str] = []
    services: Dict[str, float] = {}
    phone_number: Optional[str] = None

class RepairmanUpdate(CamelModel):
    skills: Optional[List[str]] = None
    services: Optional[Dict[str, float]] = None
    phone_number: Optional[str] = None

class RepairmanResponse(CamelModel):
    id: int
    user_id: int
    skills: List[str]
    services: Dict[str, float]
    phone_number: Optional[str] = None
    verified: bool
    created_at: Optional[datetime] = None

class RepairmanStatusResponse(CamelModel):
    is_repairman: bool
    repairman: Optional[RepairmanResponse] = None

class ShopCreate(CamelModel):
    name: Optional[str] = None
    address: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    services: Dict[str, float] = {}
    photos: List[str] = []
    phone_number: Optional[str] = None

class ShopUpdate(CamelModel):
    name: Optional[str] = None
    address: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    services: Optional[Dict[str, float]] = None
    photos: Optional[List[str]] = None
    phone_number: Optional[str] = None

class ShopResponse(CamelModel):
    id: int
    owner_id: int
    name: str
    address: str
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    services: Dict[str, float]
    photos: List[str]
    phone_number: Optional[str] = None
    created_at: Optional[datetime] = None

class ShopStatusResponse(CamelModel):
    has_shop: bool
    shop: Optional[ShopResponse] = None

class ProviderGrant(CamelModel):
    """Returned when a user's role flags change; carries a token with the new flags."""

    message: str
    token: str
    user: UserResponse
