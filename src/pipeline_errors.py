"""
pipeline_errors.py
Error taxonomy shared by the COVID-19 and shooting-incident pipelines.

Every error is fatal to the run. Each one names the stage that raised it and,
where there is one, the key (column, row key, URL) needed to diagnose it.
"""


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    def __init__(self, message: str, stage: str = "", key=None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.key = key

    def __str__(self):
        text = f"[{self.stage}] {self.message}" if self.stage else self.message
        if self.key is not None:
            text += f" (key={self.key!r})"
        return text


class FetchError(PipelineError):
    """Source file could not be downloaded or is not delimited text with a header."""


class SchemaError(PipelineError):
    """An expected column is absent (upstream schema drift)."""


class ParseError(PipelineError):
    """A date field does not match its expected format."""


class IntegrityError(PipelineError):
    """Two tables to be combined positionally do not share the same key sequence."""
