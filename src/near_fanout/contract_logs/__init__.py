"""Contract log notifications."""

from near_fanout.contract_logs.nep297 import (
    Nep297LogFilter,
    Nep297LogModule,
    Nep297LogService,
    Nep297LogSubscriber,
)
from near_fanout.contract_logs.text import (
    TextLogFilter,
    TextLogModule,
    TextLogService,
    TextLogSubscriber,
)

__all__ = [
    "Nep297LogFilter",
    "Nep297LogModule",
    "Nep297LogService",
    "Nep297LogSubscriber",
    "TextLogFilter",
    "TextLogModule",
    "TextLogService",
    "TextLogSubscriber",
]
