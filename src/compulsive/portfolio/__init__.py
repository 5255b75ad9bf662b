"""Portfolio capability implementations."""

from .paper import PaperPortfolio
from .redis_proxy import RedisPortfolioProxy

__all__ = ["PaperPortfolio", "RedisPortfolioProxy"]
