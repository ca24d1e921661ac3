from paperflow.repositories.access import DailyAccessRepository
from paperflow.repositories.documents import DocumentRepository
from paperflow.repositories.tags import TagGarbageCollector

__all__ = ["DailyAccessRepository", "DocumentRepository", "TagGarbageCollector"]
