"""Storage backends for Courier.

Persists subscribers, delivery records and their attempt history in a
relational database through SQLAlchemy's async engine.

Example:
    ```python
    from courier.storage import CourierStorage

    async with CourierStorage() as storage:
        record = await storage.get_delivery("dlv_abc123")
    ```
"""

from .client import CourierStorage
from .retry import db_retry
from .tables import Base

__all__ = [
    "Base",
    "CourierStorage",
    "db_retry",
]
