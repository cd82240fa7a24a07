"""Exception hierarchy shared by the parser, analyzers and runner."""


class LarashieldError(Exception):
    """Base class for all larashield errors."""


class ParseError(LarashieldError):
    """A PHP file could not be parsed without syntax errors."""

    def __init__(self, message: str, path: str = None, line: int = None):
        super().__init__(message)
        self.path = path
        self.line = line


class ConfigError(LarashieldError):
    """The configuration file is unreadable or malformed."""


class ExternalToolError(LarashieldError):
    """An external tool needed by an analyzer failed to run."""


class ComposerError(ExternalToolError):
    """Composer is missing, timed out or exited with an error."""
