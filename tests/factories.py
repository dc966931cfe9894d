"""
FactoryBoy factories for test data creation.
"""

import factory

from app.core.database import DBSession
from app.main_app.models import Company, Contact, Deal, LineItem


class SQLModelFactory(factory.Factory):
    """Base factory class for SQLModel objects with database integration"""

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        """
        Create and save the object to the database.
        This requires a db session to be available in the context.
        """
        db = cls._get_db_session()
        return db.create(model_class(*args, **kwargs))

    @classmethod
    def _get_db_session(cls):
        """Get the database session from the current test context"""
        raise NotImplementedError('Database session not available. Use create_with_db() method.')

    @classmethod
    def create_with_db(cls, db: DBSession, **kwargs):
        """Create an object with the provided database session"""
        original_method = cls._get_db_session

        def get_db_session():
            return db

        cls._get_db_session = get_db_session

        try:
            return cls.create(**kwargs)
        finally:
            cls._get_db_session = original_method


class ContactFactory(SQLModelFactory):
    class Meta:
        model = Contact

    hubspot_id = factory.Sequence(lambda n: str(500 + n))
    first_name = 'Test'
    last_name = factory.Sequence(lambda n: f'Contact{n}')
    email = factory.Sequence(lambda n: f'contact{n}@example.com')


class CompanyFactory(SQLModelFactory):
    class Meta:
        model = Company

    hubspot_id = factory.Sequence(lambda n: str(600 + n))
    name = factory.Sequence(lambda n: f'Company {n}')
    domain = 'example.com'


class DealFactory(SQLModelFactory):
    class Meta:
        model = Deal

    hubspot_id = factory.Sequence(lambda n: str(700 + n))
    name = factory.Sequence(lambda n: f'Deal {n}')
    stage = 'appointmentscheduled'
    amount = 1500.0


class LineItemFactory(SQLModelFactory):
    class Meta:
        model = LineItem

    hubspot_id = factory.Sequence(lambda n: str(800 + n))
    name = factory.Sequence(lambda n: f'Line Item {n}')
    quantity = 2
    price = 100.0
