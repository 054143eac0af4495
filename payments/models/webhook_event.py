from __future__ import annotations

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from payments.database import Base
from payments.models.subscription import epoch_now


class WebhookEvent(Base):
    """Provider event ids that have already been applied."""

    __tablename__ = "webhook_events"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    type: Mapped[str] = mapped_column(String(128), nullable=False)
    processed_at: Mapped[int] = mapped_column(BigInteger, default=epoch_now, nullable=False)
