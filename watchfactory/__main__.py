"""Entry point for `python -m watchfactory`.

Usage:
    python -m watchfactory
    WATCHFACTORY_KINDS=pod,node WATCHFACTORY_LOG_EVENTS=true python -m watchfactory
"""

from __future__ import annotations

import asyncio

from watchfactory.app import main

asyncio.run(main())
