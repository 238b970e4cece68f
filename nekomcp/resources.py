"""Widget descriptors and the URI-addressed resource registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from .exceptions import BadConfig, ResourceNotFound


WIDGET_MIME_TYPE = "text/html+skybridge"


@dataclass(frozen=True)
class Widget:
    """A pre-built HTML bundle the host renders for a tool's output."""

    id: str
    title: str
    description: str
    template_uri: str
    relative_path: str
    invoking: str
    invoked: str

    def meta(self) -> dict[str, Any]:
        return {
            "openai/outputTemplate": self.template_uri,
            "openai/toolInvocation/invoking": self.invoking,
            "openai/toolInvocation/invoked": self.invoked,
            "openai/widgetAccessible": True,
            "openai/resultCanProduceWidget": True,
        }


CAT_GALLERY_WIDGET = Widget(
    id="cat-gallery",
    title="Cat gallery widget",
    description="React-based inline carousel for cat photos",
    template_uri="ui://widget/cat-gallery.html",
    relative_path="widget/cat-gallery.html",
    invoking="Collecting cats…",
    invoked="Served the cat gallery",
)


@dataclass(frozen=True)
class Resource:
    uri: str
    name: str
    description: str
    text: str
    mime_type: str = WIDGET_MIME_TYPE
    meta: dict[str, Any] = field(default_factory=dict)

    def descriptor(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
            "_meta": self.meta,
        }

    def template_descriptor(self) -> dict[str, Any]:
        return {
            "uriTemplate": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
            "_meta": self.meta,
        }


def load_widget_markup(public_dir: Path, widget: Widget) -> str:
    path = Path(public_dir) / widget.relative_path
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise BadConfig(
            message=f"Widget asset for {widget.id!r} not found at {path}; build the widget bundle first",
        ) from exc


def widget_resource(widget: Widget, html: str) -> Resource:
    return Resource(
        uri=widget.template_uri,
        name=widget.title,
        description=widget.description,
        text=html,
        meta=widget.meta(),
    )


class ResourceRegistry:
    """Serves static widget markup by URI."""

    def __init__(self, resources: Iterable[Resource]) -> None:
        self._resources: dict[str, Resource] = {}
        for resource in resources:
            if resource.uri in self._resources:
                raise ValueError(f"Duplicate resource uri: {resource.uri}")
            self._resources[resource.uri] = resource

    @classmethod
    def from_public_dir(cls, public_dir: Path, widgets: Iterable[Widget] = (CAT_GALLERY_WIDGET,)) -> "ResourceRegistry":
        """Load every widget's markup once from the public directory."""

        return cls(widget_resource(widget, load_widget_markup(public_dir, widget)) for widget in widgets)

    def __contains__(self, uri: object) -> bool:
        return uri in self._resources

    def list_resources(self) -> list[dict[str, Any]]:
        return [resource.descriptor() for resource in self._resources.values()]

    def list_templates(self) -> list[dict[str, Any]]:
        return [resource.template_descriptor() for resource in self._resources.values()]

    def read(self, uri: str) -> list[dict[str, Any]]:
        resource = self._resources.get(uri)
        if resource is None:
            raise ResourceNotFound(message=f"Unknown resource: {uri}", details={"uri": uri})
        return [
            {
                "uri": resource.uri,
                "mimeType": resource.mime_type,
                "text": resource.text,
                "_meta": resource.meta,
            }
        ]
