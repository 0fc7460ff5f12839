from datetime import datetime
from sqlmodel import SQLModel, Field
from typing import Optional

class Job(SQLModel, table=True):
    __tablename__ = "jobs"
    id: str = Field(primary_key=True, max_length=36)  # queue job id (uuid4 hex string)
    job_type: str = Field(index=True)  # "optimize-image", "transcode-video", "generate-thumbnail"
    status: str = Field(index=True)  # "queued", "running", "succeeded", "failed"
    payload_json: str = Field(default="{}")
    progress_percent: int = Field(default=0)
    result_json: Optional[str] = Field(default=None, nullable=True)
    error_type: Optional[str] = Field(default=None, nullable=True)
    error_message: Optional[str] = Field(default=None, nullable=True)
    started_at: Optional[datetime] = Field(default=None, nullable=True)
    finished_at: Optional[datetime] = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
