"""Exceptions raised by dinerotate."""


class MatchingError(Exception):
    """The input cannot produce any valid plan."""


class TooFewPartiesError(MatchingError):
    def __init__(self, active_count: int, minimum: int = 3):
        self.active_count = active_count
        self.minimum = minimum
        super().__init__(
            f"At least {minimum} active parties are required to run matching "
            f"(got {active_count})"
        )


class InsufficientCapacityError(MatchingError):
    def __init__(self, course: str, capacity: int, demand: int):
        self.course = course
        self.capacity = capacity
        self.demand = demand
        super().__init__(
            f"Insufficient capacity for {course}: {capacity} seats < {demand} guests. "
            "Add hosts or raise max guests per host."
        )


class TimingConfigError(ValueError):
    """Reveal timing settings that cannot produce an ordered schedule."""


class ConfigError(ValueError):
    """Malformed event configuration or party roster."""


class PlanNotFoundError(LookupError):
    pass


class PlanConflictError(RuntimeError):
    """The plan changed since the caller last read it."""
