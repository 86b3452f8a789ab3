"""
RPC subsystem exports.
"""

from .client import RemoteFreezer, RPCRequestError, RPCResponseError
from .errors import RPCError
from .handlers import FreezerHandlers
from .server import RPCServer

__all__ = ["FreezerHandlers", "RPCError", "RPCRequestError", "RPCResponseError", "RPCServer", "RemoteFreezer"]
