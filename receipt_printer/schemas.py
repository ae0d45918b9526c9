from __future__ import annotations

"""
Pydantic schemas for receipt templates.

These models validate the structured data handed to the render pipeline and
provide a typed structure for downstream layout. The rendering layer never
recomputes business totals; the model only checks that supplied totals agree
with the line items.
"""

import base64
import binascii
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Literal, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from receipt_printer.core.errors import TemplateInvalid

MAX_QR_LEN = 512
TOTALS_TOLERANCE = Decimal("0.005")


def _has_control_chars(s: str) -> bool:
    return any((ord(c) < 32 and c not in "\n\r\t") or ord(c) == 127 for c in s)


def _clean(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = str(v).strip()
    if _has_control_chars(v):
        raise ValueError("control characters not allowed")
    return v or None


class Business(BaseModel):
    """Business identity printed in the receipt header (VAT id goes in the footer)."""

    name: str = Field(min_length=1, max_length=64, examples=["Cottage Tandoori"])
    address: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=40)
    email: Optional[str] = Field(default=None, max_length=120)
    website: Optional[str] = Field(default=None, max_length=120)
    vat_id: Optional[str] = Field(default=None, max_length=40)

    @field_validator("name")
    @classmethod
    def _name_rules(cls, v: str) -> str:
        v = _clean(v) or ""
        if not v:
            raise ValueError("business name is required")
        return v

    @field_validator("address", "phone", "email", "website", "vat_id")
    @classmethod
    def _optional_text(cls, v: Optional[str]) -> Optional[str]:
        return _clean(v)


class QRSpec(BaseModel):
    """A QR code attached to the header or footer zone."""

    content: str = Field(min_length=1, max_length=MAX_QR_LEN, examples=["https://example.com"])
    size: Literal["small", "medium", "large"] = "medium"
    zone: Literal["header", "footer"] = "footer"
    enabled: bool = True

    @field_validator("content")
    @classmethod
    def _content_rules(cls, v: str) -> str:
        if _has_control_chars(v):
            raise ValueError("QR data cannot contain control characters")
        return v


class Modifier(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    price: Optional[Decimal] = None

    @field_validator("name")
    @classmethod
    def _name_rules(cls, v: str) -> str:
        return _clean(v) or ""


class LineItem(BaseModel):
    """One ordered line: quantity x unit price, with optional modifiers and a note."""

    name: str = Field(min_length=1, max_length=120)
    quantity: int = Field(default=1, ge=1, le=999)
    unit_price: Decimal = Field(default=Decimal("0"), validation_alias=AliasChoices("unit_price", "price"))
    modifiers: List[Modifier] = Field(default_factory=list)
    note: Optional[str] = Field(
        default=None,
        max_length=200,
        validation_alias=AliasChoices("note", "special_instructions", "specialInstructions"),
    )

    @field_validator("name")
    @classmethod
    def _name_rules(cls, v: str) -> str:
        v = _clean(v) or ""
        if not v:
            raise ValueError("item name is required")
        return v

    @field_validator("note")
    @classmethod
    def _note_rules(cls, v: Optional[str]) -> Optional[str]:
        return _clean(v)

    @field_validator("modifiers", mode="before")
    @classmethod
    def _modifier_strings(cls, v: Any) -> Any:
        # Modifiers may arrive as bare names
        if isinstance(v, list):
            return [{"name": m} if isinstance(m, str) else m for m in v]
        return v

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def modifiers_total(self) -> Decimal:
        return sum((m.price or Decimal("0") for m in self.modifiers), Decimal("0")) * self.quantity


class OrderInfo(BaseModel):
    receipt_number: Optional[str] = Field(
        default=None, max_length=40, validation_alias=AliasChoices("receipt_number", "order_number", "orderNumber")
    )
    date: Optional[datetime] = None
    customer_name: Optional[str] = Field(default=None, max_length=80)
    order_type: Optional[str] = Field(
        default=None, max_length=30, validation_alias=AliasChoices("order_type", "orderType")
    )
    table: Optional[str] = Field(default=None, max_length=20)

    @field_validator("receipt_number", "customer_name", "order_type", "table", mode="before")
    @classmethod
    def _text_fields(cls, v: Any) -> Optional[str]:
        return _clean(v) if v is not None else None


class Totals(BaseModel):
    subtotal: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    delivery_fee: Optional[Decimal] = None
    total: Optional[Decimal] = None


class ReceiptTemplate(BaseModel):
    """Rendering input for one receipt, bill or kitchen ticket."""

    model_config = ConfigDict(ser_json_bytes="base64")

    business: Business
    logo: Optional[bytes] = Field(
        default=None, description="Raw logo image bytes; base64 text is accepted and decoded"
    )
    logo_path: Optional[str] = Field(default=None, description="Filesystem reference to a logo image")
    qr_codes: List[QRSpec] = Field(default_factory=list)
    order: OrderInfo = Field(default_factory=OrderInfo)
    items: List[LineItem] = Field(default_factory=list)
    totals: Optional[Totals] = None
    footer_message: Optional[str] = Field(default=None, max_length=500)
    special_instructions: Optional[str] = Field(
        default=None,
        max_length=500,
        validation_alias=AliasChoices("special_instructions", "specialInstructions"),
    )

    @field_validator("logo", mode="before")
    @classmethod
    def _decode_logo(cls, v: Any) -> Any:
        if isinstance(v, str):
            try:
                return base64.b64decode(v, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError(f"logo is not valid base64: {e}") from e
        return v

    @field_validator("footer_message", "special_instructions")
    @classmethod
    def _free_text(cls, v: Optional[str]) -> Optional[str]:
        return _clean(v)

    @model_validator(mode="after")
    def _totals_agree(self) -> "ReceiptTemplate":
        t = self.totals
        if t is None:
            return self
        items_sum = sum((i.line_total + i.modifiers_total for i in self.items), Decimal("0"))
        if t.subtotal is not None and abs(t.subtotal - items_sum) > TOTALS_TOLERANCE:
            raise ValueError(f"subtotal {t.subtotal} does not match line items ({items_sum})")
        if t.total is not None:
            base = t.subtotal if t.subtotal is not None else items_sum
            expected = base + (t.tax or Decimal("0")) + (t.delivery_fee or Decimal("0"))
            if abs(t.total - expected) > TOTALS_TOLERANCE:
                raise ValueError(f"total {t.total} does not match subtotal, tax and fees ({expected})")
        return self

    def qr_for_zone(self, zone: str) -> List[QRSpec]:
        return [q for q in self.qr_codes if q.enabled and q.zone == zone]


def parse_template(data: Union[ReceiptTemplate, Mapping[str, Any]]) -> ReceiptTemplate:
    """
    Validate a mapping into a ReceiptTemplate. Raises TemplateInvalid on any failure.
    """
    if isinstance(data, ReceiptTemplate):
        return data
    if not isinstance(data, Mapping):
        raise TemplateInvalid(f"template must be a mapping, got {type(data).__name__}")
    try:
        return ReceiptTemplate.model_validate(dict(data))
    except ValidationError as e:
        errors = e.errors(include_url=False)
        first = errors[0] if errors else {}
        where = ".".join(str(p) for p in first.get("loc", ())) or "template"
        raise TemplateInvalid(f"{where}: {first.get('msg', 'invalid')}", errors) from e


__all__ = [
    "Business",
    "LineItem",
    "Modifier",
    "OrderInfo",
    "QRSpec",
    "ReceiptTemplate",
    "Totals",
    "parse_template",
]
