"""Разбор multipart/form-data тела запроса.

Конечный автомат -- ``python_multipart.MultipartParser``: тело подаётся ему
кусками, готовые части отдаются лениво по мере прохода. Первая битая или
обрезанная часть останавливает разбор с ``ParseError``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from .errors import NothingToUpdate, ParseError, ValidationError

DEFAULT_MIME_TYPE = "application/octet-stream"

CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class Part:
    name: str
    headers: dict[str, str]
    data: bytes

    @property
    def content_type(self) -> str | None:
        return self.headers.get("content-type")


@dataclass
class ImageForm:
    image: bytes | None = None
    mime_type: str | None = None
    name: str | None = None
    description: str | None = None

    def require_complete(self) -> None:
        if not self.image or not self.name or not self.description:
            raise ValidationError()

    def require_any(self) -> None:
        if self.image is None and self.name is None and self.description is None:
            raise NothingToUpdate()


def extract_boundary(content_type: str | None) -> str:
    if not content_type:
        raise ParseError("Missing boundary")
    _, params = parse_options_header(content_type)
    boundary = params.get(b"boundary", b"").decode("latin-1")
    if not boundary:
        raise ParseError("Missing boundary")
    return boundary


def _field_name(headers: dict[str, str]) -> str:
    disposition = headers.get("content-disposition")
    if disposition is None:
        raise ParseError("Part without Content-Disposition")
    kind, params = parse_options_header(disposition)
    if kind.lower() != b"form-data":
        raise ParseError("Part is not form-data")
    name = params.get(b"name", b"").decode("utf-8", errors="replace")
    if not name:
        raise ParseError("Part without field name")
    return name


def _opening_offset(body: bytes, boundary: str) -> int:
    # разделитель -- только целая строка "--boundary", преамбулу пропускаем
    opening = re.compile(rb"(?:\A|\r\n)(--" + re.escape(boundary.encode("latin-1")) + rb")(?:--|\r\n)")
    match = opening.search(body)
    if match is None:
        raise ParseError("Opening boundary not found")
    return match.start(1)


class _Collector:
    """Складывает готовые части из колбэков парсера."""

    def __init__(self):
        self.done: list[tuple[dict[str, str], bytes]] = []
        self.ended = False
        self._headers: dict[str, str] = {}
        self._field = bytearray()
        self._value = bytearray()
        self._data = bytearray()

    def callbacks(self) -> dict:
        return {
            "on_part_begin": self.on_part_begin,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_end": self.on_end,
        }

    def on_part_begin(self):
        self._headers = {}
        self._data = bytearray()

    def on_header_field(self, data: bytes, start: int, end: int):
        self._field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int):
        self._value += data[start:end]

    def on_header_end(self):
        self._headers[self._field.decode("latin-1").strip().lower()] = self._value.decode("latin-1").strip()
        self._field = bytearray()
        self._value = bytearray()

    def on_part_data(self, data: bytes, start: int, end: int):
        self._data += data[start:end]

    def on_part_end(self):
        self.done.append((self._headers, bytes(self._data)))

    def on_end(self):
        self.ended = True

    def drain(self) -> Iterator[Part]:
        done, self.done = self.done, []
        for headers, data in done:
            yield Part(name=_field_name(headers), headers=headers, data=data)


def iter_parts(body: bytes, boundary: str) -> Iterator[Part]:
    """Отдаёт части тела по одной; генератор одноразовый."""
    start = _opening_offset(body, boundary)
    collector = _Collector()
    parser = MultipartParser(boundary, callbacks=collector.callbacks())

    for offset in range(start, len(body), CHUNK_SIZE):
        try:
            parser.write(body[offset:offset + CHUNK_SIZE])
        except MultipartParseError as e:
            # части, собранные до ошибки, всё равно отдаём
            yield from collector.drain()
            raise ParseError(f"Malformed multipart body: {e}") from e
        yield from collector.drain()
        if collector.ended:
            break

    parser.finalize()
    yield from collector.drain()
    if not collector.ended:
        raise ParseError("Truncated multipart body")


def _text(part: Part) -> str:
    try:
        return part.data.decode("utf-8")
    except UnicodeDecodeError:
        raise ParseError(f"Field {part.name!r} is not valid utf-8")


def ingest(body: bytes, content_type: str | None) -> ImageForm:
    """Собирает из тела поля image/name/description, остальные поля игнорирует."""
    boundary = extract_boundary(content_type)
    form = ImageForm()
    for part in iter_parts(body, boundary):
        if part.name == "image":
            form.image = part.data
            form.mime_type = part.content_type or DEFAULT_MIME_TYPE
        elif part.name == "name":
            form.name = _text(part)
        elif part.name == "description":
            form.description = _text(part)
    return form
