"""Domain Value Objects"""
from pydantic import BaseModel, Field, validator
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterator, Optional

from domain.exceptions import ValidationError


class DateRange(BaseModel):
    """Value Object for a stay: nights from check_in up to, not including, check_out"""
    check_in: date
    check_out: date

    @validator('check_out')
    def check_out_after_check_in(cls, v, values):
        if 'check_in' in values and v <= values['check_in']:
            raise ValueError('Check-out must be after check-in')
        return v

    @classmethod
    def of(cls, check_in: Optional[date], check_out: Optional[date]) -> "DateRange":
        """Build a range, raising the domain ValidationError on bad input"""
        if check_in is None or check_out is None:
            raise ValidationError("Both check-in and check-out dates are required")
        if check_out <= check_in:
            raise ValidationError("Check-out must be after check-in")
        return cls(check_in=check_in, check_out=check_out)

    def nights(self) -> int:
        """Calculate number of nights"""
        return (self.check_out - self.check_in).days

    def each_night(self) -> Iterator[date]:
        for offset in range(self.nights()):
            yield self.check_in + timedelta(days=offset)

    def overlaps(self, other: "DateRange") -> bool:
        return self.check_in < other.check_out and other.check_in < self.check_out

    class Config:
        frozen = True


class Money(BaseModel):
    """Value Object for monetary amounts"""
    amount: Decimal = Field(ge=0)
    currency: str = "ETB"

    class Config:
        frozen = True


class BookingDraft(BaseModel):
    """What a customer asked to book, before any room is allocated"""
    hotel_id: int
    room_type: str
    date_range: DateRange
    guests: int = Field(ge=1)
    guest_ref: str

    class Config:
        frozen = True
