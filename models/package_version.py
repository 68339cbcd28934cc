from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, Index
from datetime import datetime
from models.base import Base


class PackageVersion(Base):
    """
    One published version of one package.

    Design:
    - (name, version) is the natural key; both are immutable once created
    - checksum/size/yanked come from the index entry and may change on re-parse
    - downloaded flips to True only after the archive hash matched checksum
    - last_update moves on every write that changed a field
    """
    __tablename__ = "package_versions"

    id = Column(Integer, primary_key=True, autoincrement=True)

    name = Column(String(255), nullable=False)
    version = Column(String(255), nullable=False)

    size = Column(BigInteger, nullable=False, default=0)
    checksum = Column(String(128), nullable=True)
    yanked = Column(Boolean, nullable=False, default=False)
    downloaded = Column(Boolean, nullable=False, default=False)

    last_update = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_package_version_key", "name", "version", unique=True),
        Index("idx_package_version_pending", "downloaded", "yanked", "last_update"),
    )
