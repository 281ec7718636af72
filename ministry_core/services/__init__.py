# =============================================================================
# ministry_core/services/__init__.py
# Service Layer
# =============================================================================

from .base_service import BaseService, ServiceResult
from .stats_service import ExecutiveStatsService, UnitStatsService

__all__ = [
    "BaseService",
    "ServiceResult",
    "UnitStatsService",
    "ExecutiveStatsService",
]
