import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from fanout.db import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Direction(str, enum.Enum):
    incoming = "incoming"
    outgoing = "outgoing"


class ProcessingStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"


class Endpoint(Base):
    __tablename__ = "endpoints"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(Text, nullable=False)
    is_primary = Column(Boolean, nullable=False, default=False)
    headers = Column(Text, nullable=True)  # JSON object of custom headers
    tenant_id = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)


class DeliveryLog(Base):
    __tablename__ = "webhook_logs"
    __table_args__ = (
        Index("idx_webhook_logs_webhook_id", "webhook_id"),
        Index("idx_webhook_logs_created_at", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    webhook_id = Column(String(36), nullable=False)
    direction = Column(String(10), nullable=False)  # Direction value
    endpoint_url = Column(Text, nullable=True)
    method = Column(String(16), nullable=False)
    headers = Column(Text, nullable=True)
    body = Column(Text, nullable=True)
    status_code = Column(Integer, nullable=True)  # 0 = transport failure
    response_body = Column(Text, nullable=True)
    response_time = Column(Integer, nullable=True)  # milliseconds
    tenant_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow)


class InboundWebhook(Base):
    __tablename__ = "incoming_webhooks"
    __table_args__ = (
        Index("idx_incoming_webhooks_created_at", "created_at"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    method = Column(String(16), nullable=False)
    headers = Column(Text, nullable=True)
    body = Column(Text, nullable=True)
    tenant_id = Column(String(64), nullable=True)
    source_ip = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    processing_status = Column(
        String(16), nullable=False, default=ProcessingStatus.pending.value
    )
    response_status = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    replay_of = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)
