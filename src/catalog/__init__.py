"""Course catalog collaborator (lesson counts only)."""

from .models import CATALOG_TABLES_CQL
from .service import CassandraCourseCatalog, CourseCatalog


__all__ = ["CATALOG_TABLES_CQL", "CassandraCourseCatalog", "CourseCatalog"]
