"""
Local repositories, one per synced entity.

Every write goes through upsert-by-natural-key (hubspot_id) in its own transaction, so replaying
the same HubSpot object never creates a second row.
"""

import logging
from datetime import datetime, timezone
from typing import Generic, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import SQLModel, select

from app.core.database import DBSession
from app.exceptions import LocalPersistenceFailure
from app.main_app.models import Company, Contact, Deal, LineItem

logger = logging.getLogger('hubsync.repository')

ModelT = TypeVar('ModelT', bound=SQLModel)


class NaturalKeyRepository(Generic[ModelT]):
    model: Type[ModelT] = NotImplemented
    natural_key_field = 'hubspot_id'

    def __init__(self, db: DBSession):
        self.db = db

    @property
    def entity_name(self) -> str:
        return self.model.__name__

    def find_by_natural_key(self, key: str) -> Optional[ModelT]:
        return self.db.exec(select(self.model).where(getattr(self.model, self.natural_key_field) == key)).one_or_none()

    def _resolve(self, values: dict) -> Optional[ModelT]:
        return self.find_by_natural_key(values[self.natural_key_field])

    @staticmethod
    def _apply(obj: ModelT, values: dict) -> ModelT:
        for field, value in values.items():
            setattr(obj, field, value)
        obj.updated = datetime.now(timezone.utc)
        return obj

    def _save(self, obj: ModelT) -> ModelT:
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def upsert(self, values: dict) -> ModelT:
        """
        Update the row matching the natural key in values, or insert a new one.
        A unique constraint violation means another writer inserted the same key first, in which case
        the write is re-applied to that row.
        """
        key = values.get(self.natural_key_field)
        try:
            obj = self._resolve(values)
            if obj:
                action = 'Updated'
                obj = self._apply(obj, values)
            else:
                action = 'Created'
                obj = self.model(**values)
            obj = self._save(obj)
        except IntegrityError as e:
            self.db.rollback()
            obj = self._resolve(values)
            if not obj:
                raise LocalPersistenceFailure(self.entity_name, key, str(e.orig)) from e
            action = 'Updated'
            try:
                obj = self._save(self._apply(obj, values))
            except SQLAlchemyError as e2:
                self.db.rollback()
                raise LocalPersistenceFailure(self.entity_name, key, str(e2)) from e2
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LocalPersistenceFailure(self.entity_name, key, str(e)) from e

        logger.info('%s %s:%s with %s %s', action, self.entity_name, obj.id, self.natural_key_field, key)
        return obj


class ContactRepository(NaturalKeyRepository[Contact]):
    model = Contact

    def find_by_email(self, email: str) -> Optional[Contact]:
        return self.db.exec(select(Contact).where(Contact.email == email)).one_or_none()

    def _resolve(self, values: dict) -> Optional[Contact]:
        """
        Contacts can be created from email-only flows before HubSpot knows about them, so they're
        matched on hubspot_id first and then on email.
        """
        by_hubspot_id = self.find_by_natural_key(values['hubspot_id']) if values.get('hubspot_id') else None
        by_email = self.find_by_email(values['email']) if values.get('email') else None
        if by_hubspot_id and by_email and by_hubspot_id.id != by_email.id:
            logger.warning(
                'Contact hubspot_id %s matches Contact:%s but email %s belongs to Contact:%s, '
                'keeping the existing email on Contact:%s',
                values['hubspot_id'],
                by_hubspot_id.id,
                values['email'],
                by_email.id,
                by_hubspot_id.id,
            )
            values.pop('email')
            return by_hubspot_id
        return by_hubspot_id or by_email

    def record_sync(
        self, contact: Contact, *, succeeded: bool, synced_at: datetime, moca_user_id: Optional[str] = None
    ) -> Contact:
        contact.sync_status = succeeded
        contact.synced_at = synced_at
        if moca_user_id:
            contact.moca_user_id = moca_user_id
        try:
            return self._save(contact)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LocalPersistenceFailure(self.entity_name, contact.hubspot_id, str(e)) from e

    def delete_with_dependents(self, hubspot_id: str) -> bool:
        """Delete the contact along with its companies, deals and their line items"""
        contact = self.find_by_natural_key(hubspot_id)
        if not contact:
            return False
        try:
            deal_ids = [d.id for d in self.db.exec(select(Deal).where(Deal.contact_id == contact.id)).all()]
            for model, condition in (
                (LineItem, LineItem.deal_id.in_(deal_ids)),
                (Deal, Deal.contact_id == contact.id),
                (Company, Company.contact_id == contact.id),
            ):
                for obj in self.db.exec(select(model).where(condition)).all():
                    self.db.delete(obj)
            self.db.delete(contact)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LocalPersistenceFailure(self.entity_name, hubspot_id, str(e)) from e
        logger.info('Deleted Contact with hubspot_id %s and its companies, deals and line items', hubspot_id)
        return True


class CompanyRepository(NaturalKeyRepository[Company]):
    model = Company


class DealRepository(NaturalKeyRepository[Deal]):
    model = Deal

    def set_has_line_items(self, deal: Deal, has_line_items: bool) -> Deal:
        if deal.has_line_items == has_line_items:
            return deal
        try:
            return self._save(self._apply(deal, {'has_line_items': has_line_items}))
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LocalPersistenceFailure(self.entity_name, deal.hubspot_id, str(e)) from e

    def delete_with_line_items(self, hubspot_id: str) -> bool:
        deal = self.find_by_natural_key(hubspot_id)
        if not deal:
            return False
        try:
            for line_item in self.db.exec(select(LineItem).where(LineItem.deal_id == deal.id)).all():
                self.db.delete(line_item)
            self.db.delete(deal)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LocalPersistenceFailure(self.entity_name, hubspot_id, str(e)) from e
        logger.info('Deleted Deal with hubspot_id %s and its line items', hubspot_id)
        return True


class LineItemRepository(NaturalKeyRepository[LineItem]):
    model = LineItem
