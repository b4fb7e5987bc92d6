"""
目录实体 - 套餐与服务（本子系统只读）
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional


@dataclass(frozen=True)
class PackageServiceLine:
    """套餐中包含的单项服务及次数"""

    service_id: int
    sessions_included: int


@dataclass
class Package:
    id: int
    name: str
    price: Decimal
    total_sessions: int
    validity_days: int
    is_active: bool = True
    services: List[PackageServiceLine] = field(default_factory=list)
    description: Optional[str] = None


@dataclass
class Service:
    id: int
    name: str
    base_price: Decimal
    is_active: bool = True
    duration_minutes: Optional[int] = None
