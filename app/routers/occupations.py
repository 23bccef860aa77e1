from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_current_user
from app.models.user import User
from app.schemas.parking import OccupationResponse
from app.services.reservations import list_own_occupations

router = APIRouter(prefix="/occupations", tags=["occupations"])


@router.get("/my-occupations", response_model=list[OccupationResponse])
def my_occupations(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return list_own_occupations(db, current_user)
