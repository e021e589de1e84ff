"""Response envelope and shared dependencies for the API routers."""
from typing import Any, Dict

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from models import utcnow


def _encode(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode='json')
    if isinstance(data, (list, tuple)):
        return [_encode(item) for item in data]
    if isinstance(data, dict):
        return {key: _encode(value) for key, value in data.items()}
    return jsonable_encoder(data)


def envelope(data: Any) -> Dict[str, Any]:
    """Wrap a successful result as ``{success, data, timestamp}``."""
    return {
        'success': True,
        'data': _encode(data),
        'timestamp': utcnow().isoformat(),
    }


def error_body(code: str, detail: str) -> Dict[str, Any]:
    return {
        'success': False,
        'error': code,
        'detail': detail,
        'timestamp': utcnow().isoformat(),
    }


def get_market(request: Request):
    """Dependency returning the running Marketplace."""
    return request.app.state.market
