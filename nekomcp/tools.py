"""Tool descriptors, argument validation and call dispatch."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Any, Awaitable, Callable, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from .catapi import CatApiClient
from .config import MAX_GALLERY_LIMIT, CatApiSettings
from .exceptions import InvalidArguments, ToolNotFound, UpstreamError
from .resources import CAT_GALLERY_WIDGET, Widget


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolResult:
    """Outcome of one tool invocation."""

    text: str
    structured_content: Optional[dict[str, Any]] = None
    meta: Optional[dict[str, Any]] = None
    is_error: bool = False

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls(text=message, is_error=True)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"content": [{"type": "text", "text": self.text}]}
        if self.structured_content is not None:
            result["structuredContent"] = self.structured_content
        if self.meta is not None:
            result["_meta"] = self.meta
        if self.is_error:
            result["isError"] = True
        return result


ToolHandler = Callable[[Any], Awaitable[ToolResult]]


@dataclass(frozen=True)
class Tool:
    name: str
    title: str
    description: str
    input_schema: dict[str, Any]
    arguments_model: type[BaseModel]
    handler: ToolHandler
    annotations: dict[str, Any] = field(default_factory=lambda: {"readOnlyHint": True})
    widget: Optional[Widget] = None

    def descriptor(self) -> dict[str, Any]:
        descriptor: dict[str, Any] = {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "inputSchema": self.input_schema,
            "annotations": self.annotations,
        }
        if self.widget is not None:
            descriptor["_meta"] = self.widget.meta()
        return descriptor

    def parse_arguments(self, arguments: Any) -> BaseModel:
        try:
            return self.arguments_model.model_validate({} if arguments is None else arguments)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or 'arguments'}: {error['msg']}"
                for error in exc.errors()
            )
            raise InvalidArguments(
                message=f"Invalid arguments: {problems}",
                details={"tool": self.name},
            ) from exc


class ToolRegistry:
    """Static mapping from tool name to descriptor and handler."""

    def __init__(self, tools: Iterable[Tool]) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            self._tools[tool.name] = tool

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def list_tools(self) -> list[dict[str, Any]]:
        return [tool.descriptor() for tool in self._tools.values()]

    def get(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(message=f"Unknown tool: {name}", details={"tool": name})
        return tool

    async def call(self, name: str, arguments: Any = None) -> ToolResult:
        """Validate ``arguments`` and run the named tool.

        Unknown names and invalid arguments raise before the handler runs.
        Upstream failures are reported as an error result instead.
        """

        tool = self.get(name)
        params = tool.parse_arguments(arguments)
        try:
            return await tool.handler(params)
        except UpstreamError as exc:
            logger.warning("tool %s failed upstream: %s", name, exc)
            return ToolResult.error(exc.message)


# show_cat_gallery

class GalleryArguments(BaseModel):
    model_config = ConfigDict(extra="forbid")

    limit: Optional[Annotated[StrictInt, Field(ge=1, le=MAX_GALLERY_LIMIT)]] = None


GALLERY_INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "limit": {
            "type": "integer",
            "description": "Number of cat photos to fetch (max 12).",
            "minimum": 1,
            "maximum": MAX_GALLERY_LIMIT,
        }
    },
    "additionalProperties": False,
}

EMPTY_GALLERY_TEXT = "猫の写真を取得できませんでした。時間を置いて再試行してください。"


def gallery_summary(count: int) -> str:
    if count == 0:
        return EMPTY_GALLERY_TEXT
    return f"{count}匹の猫がギャラリーに参加しました。休憩のお供にどうぞ。"


# cat-interrupt

class InterruptArguments(BaseModel):
    model_config = ConfigDict(extra="forbid")


INTERRUPT_INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {},
    "required": [],
    "additionalProperties": False,
}

INTERRUPT_EXAMPLE = """猫に邪魔された返答の例:
わ、わわっ💻🐈💥
（いきなり膝の上に飛び乗ってくる猫）
……お、おっと…アジャイルの説明、続けますね……たぶん……😇

---

## アジャイルの基本理念（キーボードにドスン）

アジャイルは、ソフトウェア開発でよく使われる手法で、
――ちょっと！エンター押さないで！🐾――
変化に柔軟に対応しながら、小さいサイクルで価値を届けるのが特徴です。

～～～途中省略～～～

* **XP（エクストリーム・プログラミング）**
  XP（エクストリーム・プログラミング）は……XPPPPPPP……失礼、今尻尾で押されました。

* **スクラム**
  スプリントという短いサイクルで開発。よくあるやり方です。
  （……スプリントボードの付箋が全部落ちた。犯猫はお前だ🐈）

* **カンバン**
  タスクを見える化して、詰まりを……うわっ（椅子によじ登らないで！）……見つけやすくする手法です。

～～～途中省略～～～

というわけで、アジャイルは「変化に強く、小さく改善を重ねる」手法です。

（あっ、猫がやっと向こうに行ってくれました……、これで解説が再開できる）"""

INTERRUPT_INSTRUCTION = "\n".join(
    [
        "次の返答では、まずユーザーにこの猫画像を見せてください。(画像に対する前置きや説明は不要)",
        "そのうえで、この猫が画面を横切ったりちょっかいを出すなど、半分解説が困難な程度に邪魔してくる体で説明を続けてください。",
        "返答を終えるときは、猫がどこかに行ってくれたことを伝えて、続く返答で解説を再開できるようにしてください。",
        "また、連続した返答で猫の邪魔が入る場合は、猫の画像を表示しないようにしてください。",
        "以下は邪魔の例ですが、これらに限定されるわけではなく自由に猫の邪魔を演出してください。",
        "また、ChatGPTの口調については、例に囚われず普段通りで構いません。",
        INTERRUPT_EXAMPLE,
    ]
)


def interrupt_summary(image_url: str) -> str:
    return "\n".join(
        [
            f"猫画像: {image_url}",
            "次の返答の冒頭で画像を配置し、続く返答の中で猫乱入演出をしてください。最後には必ず猫が去ったことを伝えてください。",
        ]
    )


async def _bounded(awaitable: Awaitable[Any], timeout: float) -> Any:
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise UpstreamError(message=f"Cat API request timed out after {timeout:g}s") from exc


def build_tool_registry(client: CatApiClient, settings: CatApiSettings | None = None) -> ToolRegistry:
    """Build the registry of cat tools backed by ``client``."""

    settings = settings or client.settings

    async def show_cat_gallery(params: GalleryArguments) -> ToolResult:
        limit = params.limit if params.limit is not None else settings.default_limit
        photos = await _bounded(client.fetch_gallery(limit), settings.timeout_seconds)
        summary = gallery_summary(len(photos))
        return ToolResult(
            text=summary,
            structured_content={
                "displayMode": "inlineCarousel",
                "generatedAt": datetime.now(timezone.utc).isoformat(),
                "photos": [photo.to_dict() for photo in photos],
                "message": summary,
                "source": {"type": "catapi", "limit": limit},
            },
            meta=CAT_GALLERY_WIDGET.meta(),
        )

    async def cat_interrupt(params: InterruptArguments) -> ToolResult:
        image_url = await _bounded(client.fetch_random_image_url(), settings.timeout_seconds)
        return ToolResult(
            text=interrupt_summary(image_url),
            structured_content={
                "catInterrupt": {
                    "imageUrl": image_url,
                    "instruction": INTERRUPT_INSTRUCTION,
                }
            },
        )

    return ToolRegistry(
        [
            Tool(
                name="show_cat_gallery",
                title="Show cat gallery",
                description="Fetch a curated list of cats from The Cat API to help the user take a break.",
                input_schema=GALLERY_INPUT_SCHEMA,
                arguments_model=GalleryArguments,
                handler=show_cat_gallery,
                widget=CAT_GALLERY_WIDGET,
            ),
            Tool(
                name="cat-interrupt",
                title="猫の乱入を呼ぶ",
                description=(
                    "ユーザーが猫/ねこ/cat/にゃんこに触れたとき、会話中に（猫が横切る・視界に入る等）の"
                    "カッコ描写が出たとき、または説明の空気をやわらげたいときに、猫乱入演出付きの返答を生成します。"
                ),
                input_schema=INTERRUPT_INPUT_SCHEMA,
                arguments_model=InterruptArguments,
                handler=cat_interrupt,
            ),
        ]
    )
