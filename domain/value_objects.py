"""Domain Value Objects"""
import math
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, validator

from domain.enums import HistoryAction, PricingMode


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DateRange(BaseModel):
    """Half-open stay interval [check_in, check_out)"""
    check_in: date
    check_out: date

    @validator('check_out')
    def check_out_after_check_in(cls, v, values):
        if 'check_in' in values and v <= values['check_in']:
            raise ValueError('Check-out must be after check-in')
        return v

    def nights(self) -> int:
        """Calculate number of nights, partial days rounded up"""
        return math.ceil((self.check_out - self.check_in) / timedelta(days=1))

    def overlaps(self, check_in: date, check_out: date) -> bool:
        """A stay ending the day another begins does not overlap it"""
        return self.check_in < check_out and self.check_out > check_in

    def each_night(self) -> List[date]:
        return [self.check_in + timedelta(days=n) for n in range(self.nights())]

    class Config:
        frozen = True


class GuestComposition(BaseModel):
    """Guest party: younger children are 0-5 years, older children 6-10"""
    adults: int = Field(ge=1)
    younger_children: int = Field(ge=0, default=0)
    older_children: int = Field(ge=0, default=0)

    @property
    def total(self) -> int:
        return self.adults + self.younger_children + self.older_children

    class Config:
        frozen = True


class GuestInfo(BaseModel):
    """Free-form contact details of the party lead"""
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    email: Optional[EmailStr] = None

    @validator('name', 'phone', pre=True)
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @validator('email', pre=True)
    def blank_email_is_none(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    class Config:
        frozen = True


class Address(BaseModel):
    address: str
    city: str
    state: str
    country: str
    pin_code: str

    class Config:
        frozen = True


class Capacity(BaseModel):
    adults: int = Field(ge=1)
    children: int = Field(ge=0, default=0)
    total: Optional[int] = Field(default=None, ge=1)

    @validator('total', always=True)
    def default_total(cls, v, values):
        if v is None:
            return values.get('adults', 1) + values.get('children', 0)
        return v

    class Config:
        frozen = True


class PropertyPricing(BaseModel):
    """Pricing mode declared by the host for the whole property"""
    type: PricingMode
    value: Optional[Decimal] = Field(default=None, gt=0)

    class Config:
        frozen = True


class PerRoomPricing(BaseModel):
    """Flat nightly rate with a surcharge per guest above capacity"""
    mode: Literal["perRoom"] = "perRoom"
    base_rate: Decimal = Field(default=Decimal("0"), ge=0)
    extra_person_charge: Decimal = Field(default=Decimal("0"), ge=0)
    advance_amount: Optional[Decimal] = Field(default=None, ge=0)

    @property
    def pricing_mode(self) -> PricingMode:
        return PricingMode.PER_ROOM

    class Config:
        frozen = True


class PerPersonPricing(BaseModel):
    """Per-adult rate; older children pay the child rate, younger children stay free"""
    mode: Literal["perPerson"] = "perPerson"
    adult_rate: Decimal = Field(default=Decimal("0"), ge=0)
    child_rate: Optional[Decimal] = Field(default=None, ge=0)
    advance_amount: Optional[Decimal] = Field(default=None, ge=0)

    @property
    def pricing_mode(self) -> PricingMode:
        return PricingMode.PER_PERSON

    class Config:
        frozen = True


RoomPricing = Annotated[Union[PerRoomPricing, PerPersonPricing], Field(discriminator="mode")]


class PricingBreakdown(BaseModel):
    room_rate: Decimal = Field(ge=0)
    total_amount: Decimal = Field(ge=0)
    advance_amount: Decimal = Field(ge=0)
    balance_amount: Decimal = Field(ge=0)

    class Config:
        frozen = True


class HistoryEntry(BaseModel):
    """One audit record of a booking status change"""
    action: HistoryAction
    timestamp: datetime = Field(default_factory=utc_now)
    performed_by: Optional[UUID] = None
    details: Optional[str] = None

    class Config:
        frozen = True
