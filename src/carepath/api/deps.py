"""FastAPI dependency injection for API routes.

Provides dependency functions for accessing the wired service graph
stored on app state at startup.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from carepath.core.deps import CarepathDeps


def get_deps(request: Request) -> CarepathDeps:
    """Get the service graph from app state.

    Args:
        request: The current request

    Returns:
        The shared CarepathDeps instance
    """
    return request.app.state.deps  # type: ignore[no-any-return]


# Type alias for cleaner route signatures
DepsDep = Annotated[CarepathDeps, Depends(get_deps)]
