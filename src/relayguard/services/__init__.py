"""Long-running services built on [BaseService][relayguard.core.base_service.BaseService].

Attributes:
    Management: NIP-86 management endpoint (FastAPI + uvicorn) for the
        relay owner.
"""

from .management import Management, ManagementConfig


__all__ = ["Management", "ManagementConfig"]
