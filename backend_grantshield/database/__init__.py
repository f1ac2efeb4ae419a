"""
Persistence for applications, check results and fraud decisions.

Default backend is SQLAlchemy (SQLite file, or PostgreSQL via DATABASE_URL).
"""

from backend_grantshield.database.models import (
    ApplicationRecord,
    CheckResultRecord,
    FraudDecisionRecord,
)
from backend_grantshield.database.store import (
    SQLAlchemyStore,
    ScreeningStore,
    get_store,
)

__all__ = [
    "ApplicationRecord",
    "CheckResultRecord",
    "FraudDecisionRecord",
    "SQLAlchemyStore",
    "ScreeningStore",
    "get_store",
]
