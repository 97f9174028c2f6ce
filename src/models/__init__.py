from src.models.asset import Asset, PoolStats
from src.models.base import Base
from src.models.trade import Trade

__all__ = [
    "Base",
    "Asset",
    "PoolStats",
    "Trade",
]
