from .logging import setup_logging
from .serialization import to_jsonable

__all__ = ["setup_logging", "to_jsonable"]
