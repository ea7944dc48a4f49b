from .ensure import ensure_schema

__all__ = ["ensure_schema"]
