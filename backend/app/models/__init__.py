from app.models.jobs import Job

__all__ = ["Job"]
