from __future__ import annotations


def refused_session_factory():
    # Behaves like a session factory whose database refuses every connection.
    def factory():
        raise ConnectionRefusedError(111, "Connect call failed ('127.0.0.1', 1)")

    return factory
