from fastapi import APIRouter, Depends
from sqlmodel import Session

from atelier.core.database import get_db
from atelier.services.pricing import pricing_engine

router = APIRouter(prefix="/api/pricing", tags=["pricing"])


@router.get("")
def current_pricing(db: Session = Depends(get_db)):
    """Active price lists for the order form. Totals are still computed server-side at checkout."""
    return {"success": True, "pricing": pricing_engine.get_pricing(db).as_dict()}
