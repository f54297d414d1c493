class PyHashLibError(Exception):
    """Base class for engine errors"""


class InvalidRunRequest(PyHashLibError, ValueError):
    """Raised synchronously by ``select_files`` when no run can start."""


class DigestError(PyHashLibError, RuntimeError):
    """A digest pass over one file did not produce a result."""


class DigestTimeout(DigestError):
    pass


class DigestAborted(DigestError):
    pass
