"""Interface to a rendering browser for sites that build results with script."""
from __future__ import annotations

from typing import List, Optional, Protocol

from .cancel import CancellationToken


class BrowserClient(Protocol):
    def get_content(
        self,
        url: str,
        selector: str,
        cancellation: Optional[CancellationToken] = None,
    ) -> List[str]:
        """Load ``url`` and return the ``href`` of every element matching ``selector``."""
        ...
