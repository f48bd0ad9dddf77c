"""Database infrastructure — engine, ORM model, and the SQL contract store."""

from agrotrust_escrow.infrastructure.database.engine import (
    close_db,
    get_engine,
    get_session_factory,
    init_db,
)
from agrotrust_escrow.infrastructure.database.orm_models import (
    Base,
    EscrowContractRow,
)
from agrotrust_escrow.infrastructure.database.repositories import SqlContractStore

__all__ = [
    "Base",
    "EscrowContractRow",
    "SqlContractStore",
    "get_engine",
    "get_session_factory",
    "init_db",
    "close_db",
]
