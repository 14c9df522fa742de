"""Error taxonomy shared by the relay, desktop and phone components."""

# Shown to phone users for any failed join. Internal reasons travel separately
# so the client can decide whether a retry makes sense.
GENERIC_JOIN_ERROR = "Could not connect. The room may have expired."


class RemoteError(Exception):
    """Base class for all Experience Remote errors."""


class JoinError(RemoteError):
    """A join-room attempt was refused."""

    reason = "join_failed"

    def __init__(self, code: str, message: str | None = None):
        self.code = code
        super().__init__(message or f"Cannot join room {code}")

    def to_reply(self) -> dict:
        return {"success": False, "error": GENERIC_JOIN_ERROR, "reason": self.reason}


class RoomNotFound(JoinError):
    reason = "not_found"

    def __init__(self, code: str):
        super().__init__(code, f"Room not found: {code}")


class RoomExpired(JoinError):
    reason = "expired"

    def __init__(self, code: str):
        super().__init__(code, f"Room expired: {code}")


class RoomAlreadyBound(JoinError):
    reason = "already_bound"

    def __init__(self, code: str):
        super().__init__(code, f"Room already has a client: {code}")


_JOIN_ERRORS = {cls.reason: cls for cls in (RoomNotFound, RoomExpired, RoomAlreadyBound)}


def join_error_from_reply(code: str, reply: dict) -> JoinError:
    """Rebuild a typed JoinError from a failed room-joined reply."""
    cls = _JOIN_ERRORS.get(reply.get("reason", ""))
    if cls is None:
        return JoinError(code, reply.get("error") or None)
    return cls(code)


class ConnectTimeout(RemoteError):
    """A connect or join did not complete within the allowed time."""


class TransportUnavailable(RemoteError):
    """The relay transport could not be reached or has gone away."""


class TunnelError(TransportUnavailable):
    """A public tunnel could not be established."""


class UnknownMessageTag(RemoteError):
    """A relay message carried a type this build does not know."""

    def __init__(self, tag):
        self.tag = tag
        super().__init__(f"Unknown message type: {tag!r}")


class SinkError(RemoteError):
    pass


class InputSinkFailure(SinkError):
    pass


class TriggerSinkFailure(SinkError):
    pass
