from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import List, Union

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import load_config
from .errors import MalformedInput, RecordStoreError, RequestTimeout, SerializationFailure, UnsupportedMethod
from .record_store import MAX_KEY, Record, RecordStore

config = load_config()

logging.basicConfig(level=config.log_level, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("recordstore")

store = RecordStore()
app = FastAPI(title="Record Store Service", version="0.1.0")

STRINGS_PATH = "/api/strings"


class RecordItem(BaseModel):
    """Wire shape of a record. Unknown fields are ignored, missing ones default."""

    model_config = ConfigDict(extra="ignore")

    key: int = Field(default=0, ge=0, le=MAX_KEY, strict=True)
    value: str = ""

    @classmethod
    def from_record(cls, record: Record) -> "RecordItem":
        return cls(key=record.key, value=record.value)

    def encode(self) -> dict:
        # zero key and empty value are left out of the response
        return self.model_dump(exclude_defaults=True)


@dataclass
class RecordListResult:
    records: List[Record]

    def payload(self) -> list:
        return [RecordItem.from_record(r).encode() for r in self.records]


@dataclass
class RecordResult:
    record: Record

    def payload(self) -> dict:
        return RecordItem.from_record(self.record).encode()


@dataclass
class MessageResult:
    message: str

    def payload(self) -> str:
        return self.message


DispatchResult = Union[RecordListResult, RecordResult, MessageResult]


@app.on_event("startup")
async def startup_event() -> None:
    logger.info("Listening on http://%s:%d", config.host, config.port)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    logger.info("Server gracefully stopped")


@app.middleware("http")
async def log_request(request: Request, call_next) -> Response:
    logger.info("request received. method:%s", request.method)
    return await call_next(request)


def error_response(request: Request, exc: RecordStoreError) -> PlainTextResponse:
    # Failures go out as plain text, never JSON-wrapped.
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return PlainTextResponse(str(exc), status_code=500)


def decode_body(body: bytes) -> dict:
    """Decode the first JSON value of a request body.

    Bytes after that value are ignored, a bare ``null`` reads as an empty
    object and ``null`` fields fall back to their defaults.
    """
    try:
        data, _ = json.JSONDecoder().raw_decode(body.decode("utf-8").lstrip())
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedInput(str(exc)) from exc
    if data is None:
        return {}
    if isinstance(data, dict):
        return {k: v for k, v in data.items() if v is not None}
    raise MalformedInput(f"cannot decode {type(data).__name__} into a record")


async def parse_item(request: Request) -> RecordItem:
    data = decode_body(await request.body())
    try:
        return RecordItem.model_validate(data)
    except ValidationError as exc:
        raise MalformedInput(str(exc)) from exc


async def dispatch(request: Request) -> DispatchResult:
    method = request.method
    if method == "GET":
        return RecordListResult(await store.list())
    if method == "POST":
        item = await parse_item(request)
        return RecordResult(await store.create(item.value))
    if method == "PUT":
        item = await parse_item(request)
        return RecordResult(await store.update(item.key, item.value))
    if method == "DELETE":
        item = await parse_item(request)
        await store.delete(item.key)
        return MessageResult("OK")
    raise UnsupportedMethod(method)


def render(result: DispatchResult) -> JSONResponse:
    try:
        return JSONResponse(result.payload())
    except (TypeError, ValueError) as exc:
        raise SerializationFailure(str(exc)) from exc


async def handle_strings(request: Request) -> Response:
    try:
        result = await asyncio.wait_for(dispatch(request), timeout=config.request_timeout)
    except asyncio.TimeoutError as exc:
        raise RequestTimeout(f"request exceeded {config.request_timeout:g}s deadline") from exc

    # GET always answers with a snapshot taken right before encoding.
    if request.method == "GET":
        result = RecordListResult(await store.list())

    return render(result)


class StringsEndpoint:
    """ASGI endpoint for the strings collection.

    Starlette only restricts methods for function endpoints, so a plain ASGI
    callable receives every verb and ``dispatch`` decides what is supported.
    """

    async def __call__(self, scope, receive, send) -> None:
        request = Request(scope, receive)
        try:
            response = await handle_strings(request)
        except RecordStoreError as exc:
            response = error_response(request, exc)
        await response(scope, receive, send)


app.add_route(STRINGS_PATH, StringsEndpoint(), include_in_schema=False)


class RecordStoreServer(uvicorn.Server):
    def handle_exit(self, sig, frame) -> None:
        logger.info("Shutting down the server...")
        super().handle_exit(sig, frame)


def run() -> None:
    server = RecordStoreServer(
        uvicorn.Config(
            app,
            host=config.host,
            port=config.port,
            timeout_graceful_shutdown=config.shutdown_grace,
            log_level=config.log_level.lower(),
        )
    )
    server.run()


if __name__ == "__main__":
    run()
