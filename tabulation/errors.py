class TabulationError(Exception):
    """Base class for errors raised by the tabulation core."""


class FormulaError(TabulationError, ValueError):
    """A custom ranking formula could not be parsed or evaluated."""


class FanOutError(TabulationError):
    """A derived score could not be written to every judge.

    The whole batch is considered unapplied; callers retry the entire batch.
    """

    def __init__(self, message: str, failed_judges=None):
        super().__init__(message)
        self.failed_judges = list(failed_judges or [])


class CompetitionNotFound(TabulationError, LookupError):
    pass
