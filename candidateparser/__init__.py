from .candidates import IceCandidate, Extension
from .errors import ErrorKind, ParseError
from .parser import parse

__all__ = ["parse", "IceCandidate", "Extension", "ParseError", "ErrorKind"]
