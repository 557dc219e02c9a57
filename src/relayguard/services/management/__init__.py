"""NIP-86 management API served over HTTP with NIP-98 authentication.

See Also:
    [Management][relayguard.services.management.service.Management]: The service class.
    [ManagementConfig][relayguard.services.management.configs.ManagementConfig]:
        Service configuration.
"""

from .configs import AuthConfig, ManagementConfig
from .service import Management


__all__ = ["AuthConfig", "Management", "ManagementConfig"]
