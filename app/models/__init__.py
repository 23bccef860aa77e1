"""
All SQLAlchemy models. Schema is the source of truth for new DBs.
Base.metadata.create_all() creates every table and index.
"""
from app.models.user import User
from app.models.parking import Parking
from app.models.occupation import Occupation

__all__ = [
    "User",
    "Parking",
    "Occupation",
]
