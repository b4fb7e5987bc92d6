"""
目录仓储实现 - 只读查询套餐与服务
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.catalog.entity import Package, PackageServiceLine, Service
from domain.catalog.repository import CatalogRepository
from infrastructure.models.catalog import PackageModel, ServiceModel


class SQLAlchemyCatalogRepository(CatalogRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_package(self, package_id: int) -> Optional[Package]:
        result = await self.session.execute(
            select(PackageModel).where(PackageModel.id == package_id)
        )
        model = result.scalar_one_or_none()
        if not model:
            return None
        return Package(
            id=model.id,
            name=model.name,
            description=model.description,
            price=Decimal(str(model.price)),
            total_sessions=model.total_sessions,
            validity_days=model.validity_days,
            is_active=bool(model.is_active),
            services=[
                PackageServiceLine(service_id=line.service_id, sessions_included=line.sessions_included)
                for line in model.services
            ],
        )

    async def get_service(self, service_id: int) -> Optional[Service]:
        result = await self.session.execute(
            select(ServiceModel).where(ServiceModel.id == service_id)
        )
        model = result.scalar_one_or_none()
        if not model:
            return None
        return Service(
            id=model.id,
            name=model.name,
            base_price=Decimal(str(model.base_price)),
            is_active=bool(model.is_active),
            duration_minutes=model.duration_minutes,
        )
