"""Near-field scene engine: turns player actions into ordered narrative batches."""

from nearfield.engine import AdvanceEngine  # noqa: F401
from nearfield.models import AdvanceResult  # noqa: F401
