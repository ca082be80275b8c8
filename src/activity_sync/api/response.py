from __future__ import annotations

from typing import Any, Dict, List, Optional


# PUBLIC_INTERFACE
def ok(data: Dict[str, Any] | List[Any] | Any, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Standard success envelope used by the service endpoints (health, metrics)."""
    return {
        "status": "ok",
        "data": data,
        "meta": meta or {},
    }


# PUBLIC_INTERFACE
def error_body(message: str) -> Dict[str, Any]:
    """Error body for auth/sync endpoints: ``{"error": message}``."""
    return {"error": message}
