from typing import Any, Iterable, List, Mapping, Union
from pydantic import BaseModel
from app.errors import ValidationError
import re

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6

def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())

def require_fields(payload: Union[BaseModel, Mapping[str, Any]], fields: Iterable[str]) -> None:
    """Raise ValidationError naming every blank field. Names are reported in camelCase,
    the way clients send them."""
    if isinstance(payload, BaseModel):
        values = payload.model_dump()
        aliases = {name: info.serialization_alias or info.alias or name for name, info in type(payload).model_fields.items()}
    else:
        values = dict(payload)
        aliases = {}
    missing: List[str] = [aliases.get(f, f) for f in fields if _is_blank(values.get(f))]
    if missing:
        raise ValidationError(missing=missing)

def validate_email(email: str) -> str:
    email = email.strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email address", field="email")
    return email

def validate_password(password: str) -> str:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password"
        )
    return password

def normalize_phone(phone: str) -> str:
    # Strip everything but digits and a leading '+'; assume the country code is included
    clean = re.sub(r'[^0-9+]', '', phone)
    if not clean.startswith('+'):
        clean = "+" + clean
    if len(clean) < 8:
        raise ValidationError("Invalid phone number", field="phoneNumber")
    return clean

def validate_phone(phone: str) -> str:
    return normalize_phone(phone)
