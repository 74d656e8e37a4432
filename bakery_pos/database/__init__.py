# bakery_pos/database/__init__.py
from .database import Database
from .unit_of_work import UnitOfWork

__all__ = ['Database', 'UnitOfWork']
