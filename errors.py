"""
Exception types raised by the number finder
"""


class FinderError(Exception):
    """Base class for all errors raised by the number finder"""


class ConfigurationError(FinderError):
    """Invalid search pattern or settings, detected before any automation starts"""


class SessionError(FinderError):
    """The BitBrowser daemon could not be reached or the browser could not be attached"""


class AutomationError(FinderError):
    """A page action failed while searching for one candidate"""

    def __init__(self, candidate, message):
        super().__init__(f"{candidate}: {message}")
        self.candidate = candidate


class ProgressFileError(FinderError):
    """The persisted search record exists but could not be parsed"""
