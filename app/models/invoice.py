# app/models/invoice.py
import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional, get_origin

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic.fields import FieldInfo

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

_NON_NUMERIC = re.compile(r"[^0-9.,\-]")


def to_number(value, default: Decimal = ZERO) -> Decimal:
    """Convertit une valeur brute en Decimal, `default` si elle n'est pas numérique."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    if isinstance(value, (int, float)):
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            return default
        return number if number.is_finite() else default
    if isinstance(value, str):
        clean = _NON_NUMERIC.sub("", value)
        # le dernier séparateur rencontré est le séparateur décimal
        if "," in clean and "." in clean:
            thousands = "." if clean.rfind(",") > clean.rfind(".") else ","
            clean = clean.replace(thousands, "")
        clean = clean.replace(",", ".")
        try:
            number = Decimal(clean)
        except InvalidOperation:
            return default
        return number if number.is_finite() else default
    return default


def to_date(value) -> Optional[date]:
    """Date ISO (ou datetime ISO) vers `date`, None si absente ou illisible."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning(f"Date illisible ignorée : {value!r}")
        return None


_TRUE = {"true", "1", "oui", "yes", "vrai", "on"}
_FALSE = {"false", "0", "non", "no", "faux", "off", ""}


def to_flag(value, default: bool = False) -> bool:
    """Booléen lenient : 'oui'/'non', 1/0, 'true'/'false' ; `default` sinon."""
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    if isinstance(value, (int, float, Decimal)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in _TRUE | _FALSE:
        return value.strip().lower() in _TRUE
    logger.warning(f"Booléen illisible, valeur par défaut retenue : {value!r}")
    return default


_SKIP = object()


def _lenient_field(field: FieldInfo, key: str, value):
    """Valeur acceptable pour le champ, ou _SKIP pour retomber sur le défaut."""
    annotation = field.annotation
    if annotation is bool:
        default = field.default if isinstance(field.default, bool) else False
        return to_flag(value, default)
    if annotation in (str, Optional[str]):
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            return str(value)
    elif isinstance(annotation, type) and issubclass(annotation, BaseModel):
        if isinstance(value, (dict, annotation)):
            return value
    elif get_origin(annotation) is list:
        if isinstance(value, (list, tuple)):
            return value
    else:
        return value
    logger.warning(f"Champ {key} illisible ignoré : {value!r}")
    return _SKIP


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _lenient(cls, data):
        # champ null ou de type inattendu : valeur par défaut du modèle
        if not isinstance(data, dict):
            return data
        fields = {}
        for name, field in cls.model_fields.items():
            fields[name] = field
            fields[field.alias or to_camel(name)] = field
        clean = {}
        for key, value in data.items():
            if value is None:
                continue
            field = fields.get(key)
            if field is not None:
                value = _lenient_field(field, key, value)
                if value is _SKIP:
                    continue
            clean[key] = value
        return clean


class LineItem(CamelModel):
    description: str = ""
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Field(
        default=ZERO,
        validation_alias=AliasChoices("unitPrice", "unitPriceHT", "unit_price"),
    )
    tva_rate: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v):
        return "" if v is None else str(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, v):
        # quantité absente : une unité
        if v is None or v == "":
            return Decimal("1")
        return to_number(v)

    @field_validator("unit_price", mode="before")
    @classmethod
    def _unit_price(cls, v):
        return to_number(v)

    @field_validator("tva_rate", "tax_rate", mode="before")
    @classmethod
    def _rate(cls, v):
        if v is None or v == "":
            return None
        return to_number(v)

    @property
    def rate(self) -> Decimal:
        if self.tva_rate is not None:
            return self.tva_rate
        if self.tax_rate is not None:
            return self.tax_rate
        return ZERO

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price

    @property
    def line_tax(self) -> Decimal:
        return self.line_total * self.rate / 100


class BankInfo(CamelModel):
    iban: str = ""
    bic: str = ""
    bank_name: str = ""
    account_holder: str = ""

    @property
    def has_any(self) -> bool:
        return bool(self.iban or self.bic or self.bank_name or self.account_holder)


class SellerInfo(CamelModel):
    company_name: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = ""
    phone: str = ""
    email: str = ""
    vat_number: str = ""
    siren: str = ""
    siret: str = ""
    legal_form: str = ""
    registered_capital: Decimal = ZERO
    rcs_number: str = ""
    naf_code: str = ""
    bank_info: BankInfo = Field(default_factory=BankInfo)


class ClientInfo(CamelModel):
    company_name: str = ""
    contact_name: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = ""
    phone: str = ""
    email: str = ""
    vat_number: str = ""
    siren: str = ""
    siret: str = ""
    legal_form: str = ""
    rcs_number: str = ""
    naf_code: str = ""
    same_as_address: bool = False
    delivery_address: str = ""
    delivery_city: str = ""
    delivery_postal_code: str = ""
    delivery_country: str = ""
    is_professional: bool = False
    is_company: bool = False
    client_type: str = ""
    type: str = ""

    @property
    def has_billing_address(self) -> bool:
        return bool(self.address or self.city or self.postal_code or self.country)

    @property
    def has_delivery_address(self) -> bool:
        return bool(
            self.delivery_address or self.delivery_city
            or self.delivery_postal_code or self.delivery_country
        )


class InvoiceRecord(CamelModel):
    invoice_number: Optional[str] = None
    currency: str = "EUR"
    invoice_date: Optional[date] = None
    service_date: Optional[date] = None
    due_date: Optional[date] = None
    items: List[LineItem] = Field(default_factory=list)
    subtotal: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    total: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    tva_exempt: bool = False
    tva_self_billing: bool = False
    auto_liquidation: bool = False
    tva_exempt_clause: Optional[str] = None
    payment_terms: str = "30 jours"
    delivery_address: str = ""
    delivery_city: str = ""
    delivery_postal_code: str = ""
    delivery_country: str = ""
    custom_delivery_address: str = ""
    delivery_address_same_as_billing: bool = False
    is_professional: bool = False
    client_type: str = ""
    customer_type: str = ""
    seller_vat_number: str = ""
    notes: str = ""

    @field_validator("invoice_date", "service_date", "due_date", mode="before")
    @classmethod
    def _dates(cls, v):
        return to_date(v)

    @field_validator("subtotal", "tax_amount", "total", "total_amount", mode="before")
    @classmethod
    def _amounts(cls, v):
        if v is None or v == "":
            return None
        return to_number(v)

    @field_validator("currency", "payment_terms", mode="before")
    @classmethod
    def _defaulted(cls, v, info):
        if not v:
            return "EUR" if info.field_name == "currency" else "30 jours"
        return str(v)

    @property
    def self_billed(self) -> bool:
        return self.tva_self_billing or self.auto_liquidation


class DeliveryAddressType(str, Enum):
    CUSTOM = "custom"
    BILLING = "billing"
    INVOICE = "invoice"
    CLIENT_BILLING = "client_billing"
    CLIENT_DELIVERY = "client_delivery"
    NONE = "none"
    ERROR = "error"


class DeliveryAddressResolution(CamelModel):
    has_delivery_address: bool
    type: DeliveryAddressType
    label: str
    address_lines: List[str] = Field(default_factory=list)

    @computed_field
    @property
    def address(self) -> str:
        return "\n".join(self.address_lines)


class TVAGroup(CamelModel):
    rate: Decimal
    base: Decimal = ZERO
    amount: Decimal = ZERO


class TotalsSummary(CamelModel):
    subtotal: Decimal
    total_tax: Decimal
    grand_total: Decimal
    groups: List[TVAGroup]


class RenderResult(BaseModel):
    success: bool
    buffer: Optional[bytes] = None
    filename: Optional[str] = None
    page_count: int = 0
    error: Optional[str] = None


class DispatchResult(CamelModel):
    success: bool
    message_id: Optional[str] = None
    recipient: Optional[str] = None
    pdf_size: int = 0
    error: Optional[str] = None
