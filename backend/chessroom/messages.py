"""
Входящие сообщения WebSocket. Проверка формата здесь: в ядро
попадают только корректные идентификаторы и поля.
"""
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from .constants import (
    DEFAULT_TIME_CONTROL,
    MAX_BOT_STRENGTH,
    MAX_TIME_CONTROL,
    MIN_BOT_STRENGTH,
    SESSION_ID_LENGTH,
    TIME_CONTROL_MINUTES,
)

SessionId = Annotated[str, Field(min_length=SESSION_ID_LENGTH, max_length=SESSION_ID_LENGTH, pattern=r"^[a-z0-9]+$")]
PlayerId = Annotated[str, Field(min_length=1, max_length=64)]


class AuthMessage(BaseModel):
    type: Literal["auth"]
    token: Optional[str] = None
    player_id: Optional[PlayerId] = None


class CreateSessionMessage(BaseModel):
    type: Literal["create_session"]
    time_control: int = Field(DEFAULT_TIME_CONTROL, ge=1, le=MAX_TIME_CONTROL)
    randomize_side: bool = False
    is_private: bool = False
    bot_game: bool = False
    bot_strength: int = Field(MIN_BOT_STRENGTH, ge=MIN_BOT_STRENGTH, le=MAX_BOT_STRENGTH)


class SessionMessage(BaseModel):
    type: Literal[
        "join_session",
        "resign",
        "offer_draw",
        "accept_draw",
        "decline_draw",
        "sync_clock",
        "subscribe_session",
    ]
    session_id: SessionId


class MoveMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["move"]
    session_id: SessionId
    from_square: str = Field(alias="from")
    to_square: str = Field(alias="to")
    promotion: Optional[Literal["q", "r", "b", "n"]] = None

    @field_validator("from_square", "to_square")
    @classmethod
    def validate_square(cls, value: str) -> str:
        if len(value) != 2 or value[0] not in "abcdefgh" or value[1] not in "12345678":
            raise ValueError(f"Cannot interpret {value!r} as a square name.")
        return value


class EnqueueMessage(BaseModel):
    type: Literal["enqueue"]
    time_control: int

    @field_validator("time_control")
    @classmethod
    def validate_time_control(cls, value: int) -> int:
        if value not in TIME_CONTROL_MINUTES:
            raise ValueError(f"Unsupported time control {value}.")
        return value


class SimpleMessage(BaseModel):
    type: Literal["cancel_queue", "reconnect", "get_pending_sessions"]


InboundMessage = Annotated[
    Union[
        AuthMessage,
        CreateSessionMessage,
        SessionMessage,
        MoveMessage,
        EnqueueMessage,
        SimpleMessage,
    ],
    Field(discriminator="type"),
]

inbound_adapter = TypeAdapter(InboundMessage)


def parse_message(raw: str) -> BaseModel:
    """Разобрать JSON-сообщение. Бросает pydantic.ValidationError."""
    return inbound_adapter.validate_json(raw)
