from app.api.v1 import billing, internal

__all__ = [
    "billing",
    "internal",
]
