from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from app.exceptions import ValidationFailure


class HubSpotWebhookEvent(BaseModel):
    """
    A single HubSpot webhook event. HubSpot sends an array of these directly (not wrapped), e.g.

    [{"eventId": 714285774, "subscriptionId": 4849549, "portalId": 50687303, "appId": 25681700,
      "occurredAt": 1765043528476, "subscriptionType": "contact.propertyChange", "attemptNumber": 0,
      "objectId": 173595202426, "propertyName": "firstname", "propertyValue": "Briane",
      "changeSource": "CRM_UI", "sourceId": "userId:10202051"}]
    """

    event_id: int = Field(validation_alias='eventId')
    subscription_type: str = Field(validation_alias='subscriptionType', min_length=1)
    object_id: int = Field(validation_alias='objectId')
    occurred_at: int = Field(validation_alias='occurredAt')
    attempt_number: int = Field(default=0, validation_alias='attemptNumber')
    property_name: Optional[str] = Field(default=None, validation_alias='propertyName')
    # Empty or null when the property has been cleared
    property_value: Optional[str] = Field(default=None, validation_alias='propertyValue')

    subscription_id: Optional[int] = Field(default=None, validation_alias='subscriptionId')
    portal_id: Optional[int] = Field(default=None, validation_alias='portalId')
    app_id: Optional[int] = Field(default=None, validation_alias='appId')
    change_source: Optional[str] = Field(default=None, validation_alias='changeSource')
    source_id: Optional[str] = Field(default=None, validation_alias='sourceId')

    model_config = ConfigDict(populate_by_name=True, extra='ignore')


_events_adapter = TypeAdapter(list[HubSpotWebhookEvent])


def parse_webhook_events(raw_body: bytes) -> list[HubSpotWebhookEvent]:
    """
    Parse the raw webhook body into events. Any shape problem rejects the whole batch.
    """
    try:
        return _events_adapter.validate_json(raw_body or b'')
    except ValidationError as e:
        raise ValidationFailure(f'Invalid webhook payload: {e.error_count()} error(s)') from e


@dataclass(frozen=True)
class ContactChanged:
    object_id: str


@dataclass(frozen=True)
class DealChanged:
    object_id: str


@dataclass(frozen=True)
class ContactDeleted:
    object_id: str


@dataclass(frozen=True)
class DealDeleted:
    object_id: str


@dataclass(frozen=True)
class Unhandled:
    subscription_type: str


SyncEvent = Union[ContactChanged, DealChanged, ContactDeleted, DealDeleted, Unhandled]


def classify_event(event: HubSpotWebhookEvent) -> SyncEvent:
    object_type, _, action = event.subscription_type.partition('.')
    object_id = str(event.object_id)
    if object_type == 'contact':
        return ContactDeleted(object_id) if action == 'deletion' else ContactChanged(object_id)
    if object_type == 'deal':
        return DealDeleted(object_id) if action == 'deletion' else DealChanged(object_id)
    return Unhandled(event.subscription_type)


class _HubSpotObject(BaseModel):
    @model_validator(mode='before')
    @classmethod
    def flatten_properties(cls, data: Any) -> Any:
        """
        HubSpot CRM v3 objects look like {'id': '1', 'properties': {'firstname': 'Jane', ...}}.
        We need: {'id': '1', 'firstname': 'Jane', ...}
        """
        if isinstance(data, dict) and isinstance(data.get('properties'), dict):
            object_id = data.get('id')
            data = {**data['properties'], 'id': str(object_id) if object_id is not None else None}
        return data

    model_config = ConfigDict(populate_by_name=True)


class HubSpotContact(_HubSpotObject):
    """HubSpot Contact"""

    id: str
    first_name: str = Field(default='', validation_alias='firstname')
    last_name: str = Field(default='', validation_alias='lastname')
    email: str = ''

    @field_validator('first_name', 'last_name', 'email', mode='before')
    @classmethod
    def null_to_empty(cls, v: Any) -> str:
        return (v or '').strip()

    @property
    def is_valid(self) -> bool:
        return bool(self.email)


class HubSpotCompany(_HubSpotObject):
    """HubSpot Company"""

    id: str
    name: str = 'Unnamed Company'
    domain: Optional[str] = None

    @field_validator('name', mode='before')
    @classmethod
    def default_name(cls, v: Any) -> str:
        return (v or 'Unnamed Company')[:255]

    @field_validator('domain', mode='before')
    @classmethod
    def empty_domain(cls, v: Any) -> Optional[str]:
        return v or None


class HubSpotDeal(_HubSpotObject):
    """HubSpot Deal"""

    id: str
    name: str = Field(default='Unnamed Deal', validation_alias='dealname')
    stage: Optional[str] = Field(default=None, validation_alias='dealstage')
    amount: Optional[float] = None

    @field_validator('name', mode='before')
    @classmethod
    def default_name(cls, v: Any) -> str:
        return (v or 'Unnamed Deal')[:255]

    @field_validator('stage', 'amount', mode='before')
    @classmethod
    def empty_to_none(cls, v: Any) -> Any:
        return None if v == '' else v


class HubSpotLineItem(_HubSpotObject):
    """HubSpot Line Item"""

    id: str
    name: str = 'Unnamed Line Item'
    quantity: int = 1
    price: Optional[float] = None
    product_id: Optional[str] = Field(default=None, validation_alias='hs_product_id')

    @field_validator('name', mode='before')
    @classmethod
    def default_name(cls, v: Any) -> str:
        return (v or 'Unnamed Line Item')[:255]

    @field_validator('quantity', mode='before')
    @classmethod
    def default_quantity(cls, v: Any) -> Any:
        if v in (None, ''):
            return 1
        # HubSpot sends numbers as strings, sometimes with decimals
        return int(float(v))

    @field_validator('price', 'product_id', mode='before')
    @classmethod
    def empty_to_none(cls, v: Any) -> Any:
        return None if v == '' else v
