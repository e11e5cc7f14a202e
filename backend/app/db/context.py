"""Request context for ownership checks."""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class RequestContext:
    """Identity of the reader making a request.

    Documents are only visible to the user who uploaded them.
    """

    user_id: UUID
