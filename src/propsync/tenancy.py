"""
Explicit tenant scope.

The active tenant is a stack held in a context variable, so scopes nest and
each thread / task sees its own. `scope()` pairs enter and exit even when the
body raises.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator, Optional, Tuple

import structlog

logger = structlog.get_logger()

# called with the tenant that becomes active (None when back at the root)
SwitchHook = Callable[[Optional[str]], None]


class TenantContext:
    def __init__(self, on_switch: Optional[SwitchHook] = None):
        self._stack: ContextVar[Tuple[str, ...]] = ContextVar(
            f"propsync_tenants_{id(self)}", default=()
        )
        self._on_switch = on_switch

    @property
    def current(self) -> Optional[str]:
        stack = self._stack.get()
        return stack[-1] if stack else None

    @property
    def depth(self) -> int:
        return len(self._stack.get())

    def enter(self, tenant: str) -> None:
        if not tenant:
            raise ValueError("tenant id must be a non-empty string")
        self._stack.set(self._stack.get() + (tenant,))
        logger.debug("tenant.enter", tenant=tenant, depth=self.depth)
        if self._on_switch is not None:
            self._on_switch(tenant)

    def exit(self) -> None:
        stack = self._stack.get()
        if not stack:
            raise RuntimeError("TenantContext.exit() called without a matching enter()")
        self._stack.set(stack[:-1])
        logger.debug("tenant.exit", tenant=stack[-1], depth=len(stack) - 1)
        if self._on_switch is not None:
            self._on_switch(self.current)

    @contextmanager
    def scope(self, tenant: Optional[str]) -> Iterator[Optional[str]]:
        """Enter `tenant` for the duration of the block; no-op if already active."""
        if tenant is None or tenant == self.current:
            yield self.current
            return
        self.enter(tenant)
        try:
            yield tenant
        finally:
            self.exit()
