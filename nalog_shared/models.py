"""
Core data models for the tax service client.

This module defines the data structures shared by the authenticator, the
request gateway and the income submission logic: credentials, the exported
session snapshot, income line items and submission results.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Dict, Any, Union
from enum import Enum

from .exceptions import ValidationError


class AuthState(Enum):
    """Credential lifecycle state."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    RENEWING = "renewing"


class PaymentType(Enum):
    """Payment types accepted by the income endpoint."""
    CASH = "CASH"
    ACCOUNT = "ACCOUNT"


class IncomeType(Enum):
    """Counter-party categories for an income record."""
    FROM_INDIVIDUAL = "FROM_INDIVIDUAL"
    FROM_LEGAL_ENTITY = "FROM_LEGAL_ENTITY"
    FROM_FOREIGN_AGENCY = "FROM_FOREIGN_AGENCY"


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a service timestamp such as ``2021-03-09T12:34:56.789Z``.

    Naive values are treated as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp: {value!r}", field_name="tokenExpireIn", cause=e)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field_name}: {value!r}", field_name=field_name)
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise ValidationError(f"Invalid {field_name}: {value!r}", field_name=field_name, cause=e)
    if not result.is_finite():
        raise ValidationError(f"Invalid {field_name}: {value!r}", field_name=field_name)
    return result


@dataclass(frozen=True)
class Identity:
    """Authenticated subject (taxpayer INN)."""
    id: Optional[str] = None


@dataclass(frozen=True)
class Credential:
    """Access/refresh token pair bound to one client device."""
    device_id: str
    token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.device_id:
            raise ValidationError("Device ID cannot be empty", field_name="device_id")
        if bool(self.token) != bool(self.refresh_token):
            raise ValidationError(
                "Access token and refresh token must be provided together",
                field_name="refresh_token" if self.token else "token"
            )

    @property
    def is_empty(self) -> bool:
        return not self.token and not self.refresh_token


@dataclass(frozen=True)
class AuthInfo:
    """Exportable session snapshot used to resume without logging in again."""
    token: str
    refresh_token: str
    token_expires_at: datetime
    device_id: str
    inn: Optional[str] = None

    @property
    def token_expires_in(self) -> str:
        return self.token_expires_at.isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'inn': self.inn,
            'token': self.token,
            'refresh_token': self.refresh_token,
            'token_expires_in': self.token_expires_in,
            'device_id': self.device_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuthInfo':
        expires_at = parse_timestamp(data.get('token_expires_in'))
        if expires_at is None:
            raise ValidationError("Stored session has no token expiry", field_name="token_expires_in")
        return cls(
            token=data['token'],
            refresh_token=data['refresh_token'],
            token_expires_at=expires_at,
            device_id=data['device_id'],
            inn=data.get('inn'),
        )


@dataclass(frozen=True)
class DeviceInfo:
    """Device descriptor sent with every authentication request."""
    source_device_id: str
    app_version: str
    user_agent: str
    source_type: str = "WEB"

    def to_payload(self) -> Dict[str, Any]:
        return {
            'sourceDeviceId': self.source_device_id,
            'sourceType': self.source_type,
            'appVersion': self.app_version,
            'metaDetails': {
                'userAgent': self.user_agent,
            },
        }


@dataclass(frozen=True)
class SmsChallenge:
    """First phase of the SMS login, handed back to the caller for code entry."""
    challenge_token: str
    phone: str
    device_id: str


@dataclass
class IncomeLineItem:
    """One service line of an income record."""
    name: str
    amount: Decimal
    quantity: Union[int, Decimal] = 1

    def __post_init__(self):
        if not self.name or not str(self.name).strip():
            raise ValidationError("Service name cannot be empty", field_name="name")
        self.amount = _to_decimal(self.amount, "amount")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            self.quantity = _to_decimal(self.quantity, "quantity")
        if self.amount < 0:
            raise ValidationError(f"Service amount cannot be negative: {self.amount}", field_name="amount")
        if self.quantity <= 0:
            raise ValidationError(f"Service quantity must be positive: {self.quantity}", field_name="quantity")


@dataclass
class SingleIncome:
    """Income with exactly one service line."""
    name: str
    amount: Union[Decimal, float, int, str]
    quantity: Union[int, float, Decimal] = 1
    date: Optional[datetime] = None


@dataclass
class MultipleIncome:
    """Income with an explicit list of service lines."""
    services: List[IncomeLineItem] = field(default_factory=list)
    date: Optional[datetime] = None


IncomeParams = Union[SingleIncome, MultipleIncome, Dict[str, Any]]


@dataclass
class IncomeSubmission:
    """Normalized income record ready to be sent."""
    services: List[IncomeLineItem]
    operation_time: datetime
    total_amount: Decimal

    @property
    def total_amount_text(self) -> str:
        return f"{self.total_amount:.2f}"


@dataclass
class SubmissionResult:
    """Registered income together with its receipt artifact."""
    receipt_id: str
    json_url: str
    print_url: str
    data: Any = None

    @property
    def approved_receipt_uuid(self) -> str:
        return self.receipt_id
