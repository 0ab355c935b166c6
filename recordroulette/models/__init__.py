from __future__ import annotations

from recordroulette.models.base import Base as Base  # noqa: F401
from recordroulette.models.identity import User  # noqa: F401
