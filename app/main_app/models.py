from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Contact(SQLModel, table=True):
    """
    Represents a contact.
    In HubSpot this is a Contact, keyed by hubspot_id.
    In Moca this is a Client, keyed by moca_user_id.
    A contact can be created from an email-only flow before its HubSpot id is known, so hubspot_id
    is nullable.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    hubspot_id: Optional[str] = Field(default=None, unique=True, index=True, max_length=64)

    first_name: str = Field(default='', max_length=255)
    last_name: str = Field(default='', max_length=255)
    email: str = Field(unique=True, index=True, max_length=255)

    # Last sync to Moca
    moca_user_id: Optional[str] = Field(default=None, max_length=255)
    synced_at: Optional[datetime] = Field(default=None)
    sync_status: Optional[bool] = Field(default=None)

    created: datetime = Field(default_factory=_now)
    updated: datetime = Field(default_factory=_now)

    @property
    def name(self):
        return f'{self.first_name} {self.last_name}'.strip()

    def __str__(self):
        return f'{self.name} ({self.email})'


class Company(SQLModel, table=True):
    """
    Represents a company associated with a contact.
    In HubSpot this is a Company.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    hubspot_id: str = Field(unique=True, index=True, max_length=64)

    name: str = Field(max_length=255)
    domain: Optional[str] = Field(default=None, max_length=255)

    contact_id: int = Field(foreign_key='contact.id', index=True)

    created: datetime = Field(default_factory=_now)
    updated: datetime = Field(default_factory=_now)

    def __str__(self):
        return self.name


class Deal(SQLModel, table=True):
    """HubSpot Deal"""

    id: Optional[int] = Field(default=None, primary_key=True)
    hubspot_id: str = Field(unique=True, index=True, max_length=64)

    name: str = Field(max_length=255)
    stage: Optional[str] = Field(default=None, max_length=255)
    amount: Optional[float] = Field(default=None)
    # Always recomputed from HubSpot's line item associations
    has_line_items: bool = Field(default=False)

    contact_id: int = Field(foreign_key='contact.id', index=True)

    created: datetime = Field(default_factory=_now)
    updated: datetime = Field(default_factory=_now)

    def __str__(self):
        return self.name or f'Deal {self.id}'


class LineItem(SQLModel, table=True):
    """HubSpot Line Item, belonging to a deal"""

    id: Optional[int] = Field(default=None, primary_key=True)
    hubspot_id: str = Field(unique=True, index=True, max_length=64)

    name: str = Field(max_length=255)
    quantity: int = Field(default=1)
    price: Optional[float] = Field(default=None)
    product_id: Optional[str] = Field(default=None, max_length=64)

    deal_id: int = Field(foreign_key='deal.id', index=True)

    created: datetime = Field(default_factory=_now)
    updated: datetime = Field(default_factory=_now)

    def __str__(self):
        return self.name
