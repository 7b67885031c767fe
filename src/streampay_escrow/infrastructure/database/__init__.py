"""Database infrastructure — engine, ORM models, repositories and the SQL store."""

from streampay_escrow.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    close_db,
    create_tables,
    get_session_factory,
    init_db,
)
from streampay_escrow.infrastructure.database.orm_models import (
    Approval,
    Base,
    Escrow,
    Milestone,
    MilestoneEvent,
    Organization,
    OrgMember,
    PlatformConnection,
)
from streampay_escrow.infrastructure.database.store import SqlEscrowStore

__all__ = [
    "Approval",
    "Base",
    "Escrow",
    "Milestone",
    "MilestoneEvent",
    "Organization",
    "OrgMember",
    "PlatformConnection",
    "SqlEscrowStore",
    "build_engine",
    "build_session_factory",
    "close_db",
    "create_tables",
    "get_session_factory",
    "init_db",
]
