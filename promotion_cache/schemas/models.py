"""
Data models for the promotion cache.

Defines the cached record and its JSON wire form.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any


PRICE_QUANTUM = Decimal("0.01")
EXPIRATION_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class Promotion:
    """A single promotion as stored in the cache."""
    id: str
    price: Decimal
    expiration_date: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary; parsed prices stay below 1e13 so the float is exact to the cent."""
        return {
            "id": self.id,
            "price": float(self.price),
            "expiration_date": self.expiration_date.strftime(EXPIRATION_FORMAT),
        }

    def to_json(self) -> str:
        """Serialize to the JSON value written to the store."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Promotion":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            price=Decimal(str(data["price"])).quantize(PRICE_QUANTUM),
            expiration_date=datetime.strptime(data["expiration_date"], EXPIRATION_FORMAT),
        )

    @classmethod
    def from_json(cls, payload: str) -> "Promotion":
        """Deserialize a stored JSON value."""
        return cls.from_dict(json.loads(payload))
