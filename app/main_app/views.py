from typing import Type

from fastapi import APIRouter, Depends
from sqlmodel import SQLModel, select
from starlette.requests import Request

from app.common.api.errors import HTTP404
from app.core.database import DBSession, get_db
from app.main_app.models import Company, Contact, Deal, LineItem

router = APIRouter()

PAGE_SIZE = 100


def _list(model: Type[SQLModel], request: Request, db: DBSession) -> list[dict]:
    """
    Filter by any column given as a query parameter, e.g. /deals/?contact_id=1&stage=closedwon
    """
    page = int(request.query_params.get('page') or 1)
    stmt = select(model)
    for key, value in request.query_params.items():
        if key in model.model_fields:
            stmt = stmt.where(getattr(model, key) == value)
    stmt = stmt.order_by(model.id).offset((max(page, 1) - 1) * PAGE_SIZE).limit(PAGE_SIZE)
    return [obj.model_dump() for obj in db.exec(stmt).all()]


def _detail(model: Type[SQLModel], obj_id: int, db: DBSession) -> dict:
    obj = db.get(model, obj_id)
    if not obj:
        raise HTTP404(f'{model.__name__} {obj_id} not found')
    return obj.model_dump()


@router.get('/contacts/', name='get-contacts')
async def get_contacts(request: Request, db: DBSession = Depends(get_db)):
    return _list(Contact, request, db)


@router.get('/contacts/{contact_id}/', name='get-contact')
async def get_contact(contact_id: int, db: DBSession = Depends(get_db)):
    return _detail(Contact, contact_id, db)


@router.get('/companies/', name='get-companies')
async def get_companies(request: Request, db: DBSession = Depends(get_db)):
    return _list(Company, request, db)


@router.get('/companies/{company_id}/', name='get-company')
async def get_company(company_id: int, db: DBSession = Depends(get_db)):
    return _detail(Company, company_id, db)


@router.get('/deals/', name='get-deals')
async def get_deals(request: Request, db: DBSession = Depends(get_db)):
    return _list(Deal, request, db)


@router.get('/deals/{deal_id}/', name='get-deal')
async def get_deal(deal_id: int, db: DBSession = Depends(get_db)):
    """A deal along with its line items"""
    deal = _detail(Deal, deal_id, db)
    deal['line_items'] = [li.model_dump() for li in db.exec(select(LineItem).where(LineItem.deal_id == deal_id)).all()]
    return deal


@router.get('/line-items/', name='get-line-items')
async def get_line_items(request: Request, db: DBSession = Depends(get_db)):
    return _list(LineItem, request, db)


@router.get('/line-items/{line_item_id}/', name='get-line-item')
async def get_line_item(line_item_id: int, db: DBSession = Depends(get_db)):
    return _detail(LineItem, line_item_id, db)
