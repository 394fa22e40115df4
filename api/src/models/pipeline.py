from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Text, Boolean, Float, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from api.src.db.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")

class PipelineRun(Base):
    __tablename__ = "pipeline_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    pipeline = Column(String(255), nullable=False)
    event_id = Column(String(36), index=True)
    repository = Column(String(255))
    commit_sha = Column(String(40))
    branch = Column(String(255), nullable=False)
    status = Column(String(50), default="pending")
    triggered_by = Column(String(255))
    config = Column(JSONType)
    error = Column(Text)
    error_type = Column(String(100))
    failed_step = Column(Integer)
    started_at = Column(DateTime)
    finished_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    steps = relationship("PipelineStep", back_populates="run", order_by="PipelineStep.step_order")

class PipelineStep(Base):
    __tablename__ = "pipeline_steps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    run_id = Column(Uuid, ForeignKey("pipeline_runs.id", ondelete="CASCADE"))
    name = Column(String(255), nullable=False)
    command = Column(Text)
    status = Column(String(50), default="pending")
    step_order = Column(Integer, nullable=False)
    exit_code = Column(Integer)
    logs = Column(Text)
    truncated = Column(Boolean, default=False)
    duration_seconds = Column(Float)
    started_at = Column(DateTime)
    finished_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    run = relationship("PipelineRun", back_populates="steps")
