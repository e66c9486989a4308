"""Diagnostic output helpers.

Debug lines are printed only when TALKDRAFT_DEBUG=1; warnings always print.
"""

from __future__ import annotations

import os
import time
from typing import Callable


def debug_enabled() -> bool:
    return os.environ.get("TALKDRAFT_DEBUG") == "1"


def make_debug(scope: str) -> Callable[[str], None]:
    def _dbg(msg: str) -> None:
        if debug_enabled():
            ts = time.strftime("%H:%M:%S")
            print(f"[{scope} {ts}] {msg}", flush=True)

    return _dbg


def noop_debug(_msg: str) -> None:
    pass


def warn(scope: str, msg: str) -> None:
    print(f"{scope}: {msg}", flush=True)
