"""Compulsive traders: service-discovered, stream-driven trading agents."""

__all__ = ["TraderController", "TraderSettings", "__version__"]
__version__ = "0.1.0"


def __getattr__(name: str):
    if name == "TraderController":
        from .core.trader import TraderController

        return TraderController
    if name == "TraderSettings":
        from .config import TraderSettings

        return TraderSettings
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
