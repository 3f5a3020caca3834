"""PostgreSQL native enum contracts for the price store schema."""

from __future__ import annotations

import logging

from sqlalchemy.dialects.postgresql import ENUM as PGEnum

from recorder.market_contract import SessionKind

logger = logging.getLogger(__name__)

session_kind_enum = PGEnum(
    SessionKind,
    name="session_kind_enum",
    values_callable=lambda kinds: [kind.value for kind in kinds],
)
