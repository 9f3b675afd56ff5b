"""HTTP client infrastructure."""
from infrastructure.http.client import (
    make_http_session,
    release_response,
)

__all__ = [
    'make_http_session',
    'release_response',
]
