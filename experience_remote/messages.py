"""Relay wire contract.

Two layers travel over a relay connection:

- Frames: JSON text objects ``{"type": <frame type>, ...}`` exchanged
  between a participant and the relay (room calls, signaling, status).
- Relay messages: the remote-control commands a phone sends to its desktop,
  carried inside ``remote-message`` frames. They form a closed tagged union
  keyed on ``type``; the tag fully determines the required fields.
"""

from typing import Annotated, Literal, Union, get_args

from pydantic import BaseModel, Field, TypeAdapter

from .errors import UnknownMessageTag

# --- Frame types ---

CREATE_ROOM = "create-room"
ROOM_CREATED = "room-created"
JOIN_ROOM = "join-room"
ROOM_JOINED = "room-joined"
CLIENT_JOINED = "client-joined"
PEER_DISCONNECTED = "peer-disconnected"
ROOM_EXPIRED = "room-expired"
REMOTE_MESSAGE = "remote-message"
OFFER = "offer"
ANSWER = "answer"
ICE_CANDIDATE = "ice-candidate"
PING = "ping"
PONG = "pong"

SIGNALING_FRAMES = (OFFER, ANSWER, ICE_CANDIDATE)

Button = Literal["left", "right", "middle"]
Direction = Literal["up", "down", "left", "right"]
MediaAction = Literal["play_pause", "next", "prev", "vol_up", "vol_down"]


# --- Relay messages ---

class MouseMove(BaseModel):
    type: Literal["mouse_move"]
    dx: float
    dy: float


class Click(BaseModel):
    type: Literal["click"]
    button: Button = "left"


class MouseDown(BaseModel):
    type: Literal["mouse_down"]
    button: Button = "left"


class MouseUp(BaseModel):
    type: Literal["mouse_up"]
    button: Button = "left"


class Scroll(BaseModel):
    type: Literal["scroll"]
    dx: float
    dy: float


class Gyro(BaseModel):
    type: Literal["gyro"]
    dx: float
    dy: float


class GyroCalibrate(BaseModel):
    type: Literal["gyro_calibrate"]


class Key(BaseModel):
    type: Literal["key"]
    key: str
    action: Literal["down", "up", "press"] = "press"


class Text(BaseModel):
    type: Literal["text"]
    text: str


class Media(BaseModel):
    type: Literal["media"]
    action: MediaAction
    value: float | None = None


class Navigate(BaseModel):
    type: Literal["navigate"]
    direction: Direction


class OscTrigger(BaseModel):
    # The web remote sends "osc"; "osc_trigger" is accepted as an alias.
    type: Literal["osc", "osc_trigger"]
    trigger: int
    address: str | None = None


class Ping(BaseModel):
    type: Literal["ping"]
    timestamp: float


class Pong(BaseModel):
    type: Literal["pong"]
    timestamp: float


MESSAGE_MODELS = (
    MouseMove, Click, MouseDown, MouseUp, Scroll, Gyro, GyroCalibrate,
    Key, Text, Media, Navigate, OscTrigger, Ping, Pong,
)

RelayMessage = Annotated[
    Union[
        MouseMove, Click, MouseDown, MouseUp, Scroll, Gyro, GyroCalibrate,
        Key, Text, Media, Navigate, OscTrigger, Ping, Pong,
    ],
    Field(discriminator="type"),
]

MESSAGE_TYPES = frozenset(
    tag
    for model in MESSAGE_MODELS
    for tag in get_args(model.model_fields["type"].annotation)
)

_adapter = TypeAdapter(RelayMessage)


def parse_message(data) -> RelayMessage:
    """Validate a decoded relay message.

    Raises UnknownMessageTag if the type is missing or unknown, and
    pydantic.ValidationError if a known type lacks its required fields.
    """
    tag = data.get("type") if isinstance(data, dict) else None
    if tag not in MESSAGE_TYPES:
        raise UnknownMessageTag(tag)
    return _adapter.validate_python(data)


def dump_message(message: BaseModel) -> dict:
    """Serialize a relay message for the wire, dropping unset optionals."""
    return message.model_dump(exclude_none=True)
