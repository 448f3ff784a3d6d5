from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from app.db.base import Base


class Generation(Base):
    __tablename__ = "generations"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    logo_url = Column(String, nullable=False)
    logo_description = Column(Text, nullable=False)
    destination_prompt = Column(Text, nullable=False)
    result_url = Column(String, nullable=False)
    result_file_name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="completed")
    credit_cost = Column(Integer, nullable=False)
    prediction_id = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    generation_metadata = Column("metadata", JSON, nullable=False, default=dict)  # model, generation_type
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
