"""ORM model registry - import all models so Alembic autogenerate can detect them."""

from repolens.models.scan_record import ScanRecord

__all__ = [
    "ScanRecord",
]
