"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking plumbing under each listener:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  SOCKET SERVER                                                       │
    │  • Binds, listens, accepts; interruptible by close()                │
    │  • Ends with ServerClosed (intentional) or OSError (failure)        │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ accepted client socket
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  THREAD POOL                                                         │
    │  • One task per connection, exceptions contained per task           │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  CONNECTION                                                          │
    │  • TLS handshake, buffered reads, read/write/idle windows            │
    │  • Keep-alive state, interruptible while idle                        │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ idle between requests
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  KEEP-ALIVE MONITOR                                                  │
    │  • Parks idle connections in a selector, off the thread pool        │
    │  • Hands them back to the pool when the client sends again          │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer, ServerClosed, ListenerState
from .connection import Connection, ConnectionState
from .keep_alive import KeepAliveMonitor
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",
    "ServerClosed",
    "ListenerState",
    "Connection",
    "ConnectionState",
    "KeepAliveMonitor",
    "ThreadPool",
]
