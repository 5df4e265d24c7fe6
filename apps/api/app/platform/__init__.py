from app.platform.security import (
    SecurityContext,
    allows,
    apply_scope,
    navigation_guard,
    render_guard,
    resolve_scope,
)

__all__ = [
    "SecurityContext",
    "allows",
    "apply_scope",
    "navigation_guard",
    "render_guard",
    "resolve_scope",
]
