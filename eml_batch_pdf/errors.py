"""Exception and warning types raised by the conversion pipeline."""

from typing import Optional


class ConverterError(Exception):
    """Base class for pipeline errors."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.source = source

    def __str__(self) -> str:
        if self.source:
            return f"{self.source}: {self.message}"
        return self.message


class ParseError(ConverterError):
    """The outer envelope of a message could not be tokenized."""


class RasterError(ConverterError):
    """HTML could not be rasterized."""


class ComposeError(ConverterError):
    """Unexpected failure while laying out a document."""


class MergeError(ConverterError):
    """A batch or run-wide merge failed."""


class ConfigurationError(ConverterError):
    """Invalid configuration. Aborts the whole run."""


class DecodeFallbackWarning(UserWarning):
    """A charset or transfer encoding could not be honored exactly."""


class RenderFallbackWarning(UserWarning):
    """The HTML body could not be rasterized and was rendered as text."""


def describe_warning(warning: Warning) -> str:
    return f"{type(warning).__name__}: {warning}"
