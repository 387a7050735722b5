"""Per-member gateway lifecycle services package."""

from .channels import *  # noqa: F401,F403
from .constants import *  # noqa: F401,F403
from .exceptions import *  # noqa: F401,F403
from .orchestrator import *  # noqa: F401,F403
