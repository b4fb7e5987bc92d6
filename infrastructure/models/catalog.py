"""
目录数据库模型 - 套餐、服务及套餐服务明细
"""
from sqlalchemy import Boolean, Column, Integer, String, Numeric, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import Base


class ServiceModel(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    base_price = Column(Numeric(precision=15, scale=2), nullable=False, comment="基础价格")
    duration_minutes = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class PackageModel(Base):
    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(precision=15, scale=2), nullable=False)
    total_sessions = Column(Integer, nullable=False, comment="总次数")
    validity_days = Column(Integer, nullable=False, comment="有效天数")
    is_active = Column(Boolean, nullable=False, default=True)

    services = relationship("PackageServiceModel", lazy="selectin", order_by="PackageServiceModel.id")


class PackageServiceModel(Base):
    __tablename__ = "package_services"

    id = Column(Integer, primary_key=True)
    package_id = Column(Integer, ForeignKey("packages.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    sessions_included = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("package_id", "service_id", name="uq_package_services_package_service"),
    )
