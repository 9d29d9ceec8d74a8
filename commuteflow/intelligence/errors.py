"""
Error kinds raised by the proximity engine and its collaborators.
An empty presence result is not an error, see PresenceResult.no_match.
"""


class CommuteFlowError(Exception):
    pass


class InvalidCoordinate(CommuteFlowError, ValueError):
    def __init__(self, lat, lng, reason: str = "out of range"):
        self.lat = lat
        self.lng = lng
        super().__init__(f"Invalid coordinate ({lat}, {lng}): {reason}")


class EmptyQuery(CommuteFlowError, ValueError):
    pass


class StoreUnavailable(CommuteFlowError, RuntimeError):
    pass


class LocationNotFound(CommuteFlowError, LookupError):
    def __init__(self, query: str):
        self.query = query
        super().__init__(f"Location not found: {query}")


class RouteNotFound(CommuteFlowError, LookupError):
    pass


class CollaboratorError(CommuteFlowError, RuntimeError):
    pass


class InvalidRoute(CommuteFlowError, ValueError):
    pass


class RouteOwnershipError(CommuteFlowError, PermissionError):
    pass
