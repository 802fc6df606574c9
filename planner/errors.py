"""Error taxonomy shared by the services and the HTTP layer."""


class PlannerError(RuntimeError):
    pass


class NotFoundError(PlannerError):
    """A slug or id did not resolve to a record."""


class PersistenceError(PlannerError):
    """A read or write against the database failed."""


class AnalysisError(PlannerError):
    """Text generation or parsing of its result failed. Safe to retry."""


class AuthError(PlannerError):
    """Invalid credentials or an expired recovery token."""
