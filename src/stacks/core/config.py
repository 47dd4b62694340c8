from stacks.core.exceptions import BaseStacksException


class CannotLoadConfiguration(BaseStacksException):
    """The service configuration could not be loaded from the environment,
    or it was loaded but is obviously wrong.
    """
