from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.config import settings


class MocaContactProperties(BaseModel):
    """
    Contact properties as Moca sends them. Every field except id is forwarded to HubSpot as a contact
    property of the same name.
    """

    id: int
    email: Optional[str] = None
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    country: Optional[str] = None
    created_at: Optional[str] = None
    registration_date: Optional[str] = None
    ct_institution_type: Optional[str] = None
    ct_certification_moca_id: Optional[Literal['true', 'false']] = None
    ct_opt_in_status: Optional[Literal['true', 'false']] = None
    ct_certification_date: Optional[str] = None
    ct_free_training_type: Optional[Literal['Academic', 'POI']] = None
    ct_certification_group: Optional[Literal['Admin', 'Member']] = None
    ct_user_role: Optional[
        Literal['HCP', 'Researcher', 'Group Admin', 'Group Member', 'POI', 'Academic', 'Individual', 'Student', 'None']
    ] = None
    date_they_registered: Optional[str] = None
    certification_status: Optional[str] = None

    model_config = ConfigDict(extra='forbid')

    @field_validator(
        'ct_institution_type',
        'ct_free_training_type',
        'ct_certification_group',
        'ct_user_role',
        'certification_status',
        mode='before',
    )
    @classmethod
    def empty_to_none(cls, v: Any) -> Any:
        return None if v == '' else v

    @field_validator('ct_certification_moca_id', 'ct_opt_in_status', mode='before')
    @classmethod
    def bool_to_str(cls, v: Any) -> Any:
        if v in (None, ''):
            return None
        if isinstance(v, bool):
            return str(v).lower()
        return v

    def hubspot_properties(self) -> dict:
        return self.model_dump(exclude={'id'}, exclude_none=True)


class MocaWebhookEvent(BaseModel):
    """
    A single event from Moca. Moca sends an array of these, e.g.

    [{"eventId": 714285774, "appId": "25681700", "occurredAt": 1765043528476, "action": "PATCH",
      "objectType": "CONTACT", "attemptNumber": 0, "objectId": "173595202426",
      "properties": {"id": 454548, "firstname": "Jane"}}]
    """

    event_id: int = Field(validation_alias='eventId')
    app_id: str = Field(validation_alias='appId')
    occurred_at: int = Field(validation_alias='occurredAt')
    action: Literal['POST', 'PATCH', 'DELETE', 'GET']
    object_type: Literal['CONTACT'] = Field(validation_alias='objectType')
    attempt_number: int = Field(validation_alias='attemptNumber')
    object_id: Optional[str] = Field(default=None, validation_alias='objectId')
    email_search: Optional[str] = Field(default=None, validation_alias='emailSearch')
    properties: Optional[MocaContactProperties] = None

    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    @field_validator('app_id')
    @classmethod
    def check_app_id(cls, v: str) -> str:
        if not settings.moca_app_id or v != settings.moca_app_id:
            raise ValueError('INVALID APPLICATION IDENTIFIER')
        return v

    @field_validator('object_id', mode='before')
    @classmethod
    def object_id_to_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class MocaSyncResult(BaseModel):
    status: bool
    action: str
    id: Optional[str] = None
    date: int
    message: Optional[str] = None
