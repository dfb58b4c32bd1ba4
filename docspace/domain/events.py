from __future__ import annotations

from typing import Literal, TypedDict, Union


class ConnectedData(TypedDict):
    message: str


class ChunkData(TypedDict):
    content: str


class DoneMetadata(TypedDict):
    processing_time: int
    model: str
    timestamp: str


class DoneData(TypedDict):
    query_id: str
    metadata: DoneMetadata


class ErrorData(TypedDict):
    error: str
    code: str


class EventPayload(TypedDict):
    # One server-sent event on the query stream; "done" or "error" is always last.
    type: Literal["connected", "chunk", "done", "error"]
    data: Union[ConnectedData, ChunkData, DoneData, ErrorData]
