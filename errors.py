"""Domain errors raised below the HTTP layer; main.py maps them to responses."""


class InvalidRequest(ValueError):
    """Input rejected before or instead of a write (400)."""


class NotFound(LookupError):
    """A referenced user, customer, project or material does not exist (404)."""
