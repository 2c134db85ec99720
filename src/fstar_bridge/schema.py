from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
)

from lsprotocol.types import Range

FRAGMENT_OK_STAGE = "full-buffer-fragment-ok"


class Query(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str
    args: Dict[str, Any]
    query_id: Optional[str] = Field(default=None, alias="query-id")

    def to_line(self) -> str:
        return self.model_dump_json(by_alias=True) + "\n"


class IdeRange(BaseModel):
    model_config = ConfigDict(extra="allow")

    fname: Optional[str] = None
    beg: Tuple[int, int]
    end: Tuple[int, int]


class _IdeMessage(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    query_id: Union[str, int, None] = Field(default=None, alias="query-id")

    def query_number(self) -> int | None:
        if self.query_id is None:
            return None
        try:
            return int(self.query_id)
        except ValueError:
            return None


class ProtocolInfo(_IdeMessage):
    kind: Literal["protocol-info"]
    version: Optional[int] = None
    features: List[str] = []


class ProgressContents(BaseModel):
    model_config = ConfigDict(extra="allow")

    stage: Optional[str] = None
    ranges: Optional[IdeRange] = None


class ProgressMessage(_IdeMessage):
    kind: Literal["message"]
    level: Literal["progress"]
    contents: ProgressContents = Field(default_factory=ProgressContents)


class IdeError(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: str
    level: Optional[str] = None
    ranges: List[IdeRange] = []


class FailureResponse(_IdeMessage):
    kind: Literal["response"]
    status: Literal["failure"]
    # F* answers malformed queries with a plain string instead of a list.
    response: Union[List[IdeError], str, None] = None


class SuccessResponse(_IdeMessage):
    kind: Literal["response"]
    status: Literal["success"]
    response: Any = None


class UnhandledMessage(_IdeMessage):
    kind: Any = None
    reason: Optional[str] = None


def _message_tag(value: Any) -> str:
    if isinstance(value, dict):
        kind = value.get("kind")
        level = value.get("level")
        status = value.get("status")
    else:
        kind = getattr(value, "kind", None)
        level = getattr(value, "level", None)
        status = getattr(value, "status", None)
    if kind == "protocol-info":
        return "protocol-info"
    if kind == "message" and level == "progress":
        return "progress"
    if kind == "response" and status in ("failure", "success"):
        return status
    return "unhandled"


IdeMessage = Annotated[
    Union[
        Annotated[ProtocolInfo, Tag("protocol-info")],
        Annotated[ProgressMessage, Tag("progress")],
        Annotated[FailureResponse, Tag("failure")],
        Annotated[SuccessResponse, Tag("success")],
        Annotated[UnhandledMessage, Tag("unhandled")],
    ],
    Discriminator(_message_tag),
]

IDE_MESSAGE_ADAPTER: TypeAdapter[Any] = TypeAdapter(IdeMessage)


class PositionDTO(BaseModel):
    line: int
    character: int


class RangeDTO(BaseModel):
    start: PositionDTO
    end: PositionDTO

    @classmethod
    def from_lsp(cls, value: Range) -> "RangeDTO":
        return cls(
            start=PositionDTO(line=value.start.line, character=value.start.character),
            end=PositionDTO(line=value.end.line, character=value.end.character),
        )


class StatusOkParams(BaseModel):
    uri: str
    ranges: List[RangeDTO]


class StatusClearParams(BaseModel):
    uri: str
