"""
Reading model for persisted sensor measurements
"""
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, JSON
from sqlalchemy.sql import func

from meterhub.core.database import Base


class Reading(Base):
    """Append-only sensor reading.

    ``payload`` holds the reading exactly as accepted; ``device_id`` and ``ts``
    are copied out of it for filtering and ordering.
    """

    __tablename__ = "readings"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(String(128), nullable=False, index=True)
    ts = Column(BigInteger, nullable=False, index=True)  # epoch millis
    payload = Column(JSON, nullable=False)
    received_at = Column(DateTime(timezone=True), server_default=func.now())
