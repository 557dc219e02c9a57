r"""relayguard -- Moderation and access control for Nostr relays.

Admission policies for inbound events and subscription filters, NIP-56
report intake, and a NIP-86 management API, all backed by a shared
PostgreSQL moderation store. The relay engine and the event store are
external collaborators reached through narrow callback contracts.

Imports flow strictly downward:

```text
          services              NIP-86 HTTP management service
              |
      guard (composition root)
         /         \
   policies     moderation      Admission chains, reports, management API
         \         /
           core                 Pool, store, config, logging, metrics
             |
           models               Frozen dataclasses (no I/O)
```

Examples:
    ```python
    from relayguard import RelayGuard, RelaySettings

    guard = RelayGuard.from_settings(RelaySettings.from_env())
    async with guard:
        decision = await guard.reject_event(ctx, event)
    ```
"""

from importlib.metadata import version as _get_version

from relayguard.core.config import RelaySettings
from relayguard.core.store import ModerationStore
from relayguard.guard import RelayGuard
from relayguard.models import Event, Filter, IdReason, PubKeyReason, Report
from relayguard.policies import Decision, RequestContext


__version__ = _get_version("relayguard")

__all__ = [
    "Decision",
    "Event",
    "Filter",
    "IdReason",
    "ModerationStore",
    "PubKeyReason",
    "RelayGuard",
    "RelaySettings",
    "Report",
    "RequestContext",
]
