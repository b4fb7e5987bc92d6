"""
目录仓储接口 - 套餐/服务的只读查询
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Package, Service


class CatalogRepository(ABC):

    @abstractmethod
    async def get_package(self, package_id: int) -> Optional[Package]:
        """获取套餐（包含服务明细）"""
        pass

    @abstractmethod
    async def get_service(self, service_id: int) -> Optional[Service]:
        """获取单项服务"""
        pass
