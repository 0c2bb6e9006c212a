from typing import Optional


class AscError(Exception):
    """Base class for errors surfaced to the CLI."""


class SourceError(AscError):
    """The upstream query process failed before signalling end-of-stream."""

    def __init__(self, message: str, returncode: Optional[int] = None, fragment_index: Optional[int] = None) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.fragment_index = fragment_index


class RenderError(AscError):
    """The markdown renderer failed to produce output for the accumulated text."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = "", fragment_index: Optional[int] = None) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr
        self.fragment_index = fragment_index

    def __str__(self) -> str:
        text = super().__str__()
        if self.fragment_index is not None:
            text = f"{text} (fragment {self.fragment_index})"
        if self.returncode is not None:
            text = f"{text} [rc={self.returncode}]"
        return text


class PersistenceError(AscError):
    """Reading or writing a conversation record failed."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path
