"""Gallery to viewer messaging over window ``postMessage``.

The gallery page broadcasts a ``SHOW_IMAGE`` envelope carrying an image
record and its absolute URL to each viewer frame, addressing every frame by
its exact origin. Viewers accept messages only from an allowlist of origins
and announce themselves to their host with a readiness signal. Delivery is
fire-and-forget: nothing is queued for a frame that is not listening yet.

``BrowsingContext`` models the browser window primitive so that the protocol
can run (and be tested) in-process.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config import Settings
from exceptions import UnauthorizedOriginError
from logging_config import get_logger
from schemas import ImageRecord

logger = get_logger(__name__)

WILDCARD_ORIGIN = "*"


class MessageType(str, Enum):
    SHOW_IMAGE = "SHOW_IMAGE"
    VIEWER_READY = "VIEWER_READY"
    VIEWER2_READY = "VIEWER2_READY"


READY_TYPES = {MessageType.VIEWER_READY.value, MessageType.VIEWER2_READY.value}


class ImageRecordView(ImageRecord):
    full_url: str = Field(alias="fullUrl")


class Envelope(BaseModel):
    type: str
    data: Optional[ImageRecordView] = None

    model_config = ConfigDict(extra='ignore')

    def to_message(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def build_image_view(record: ImageRecord, api_base_url: str) -> ImageRecordView:
    return ImageRecordView(
        **record.model_dump(),
        full_url=f"{api_base_url.rstrip('/')}{record.public_path}",
    )


def show_image_envelope(record: ImageRecord, api_base_url: str) -> Envelope:
    return Envelope(type=MessageType.SHOW_IMAGE.value, data=build_image_view(record, api_base_url))


@dataclass
class MessageEvent:
    origin: str
    data: Any
    source: Optional["BrowsingContext"] = None


Listener = Callable[[MessageEvent], None]


class BrowsingContext:
    def __init__(self, origin: str, parent: Optional["BrowsingContext"] = None):
        self.origin = origin
        self.parent = parent
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def post_message(self, message: Any, target_origin: str, source: Optional["BrowsingContext"] = None) -> None:
        """Queue ``message`` for this window's current listeners.

        Matches the browser contract: a target origin other than ``*`` that
        differs from this window's origin means the message is discarded.
        """
        if target_origin != WILDCARD_ORIGIN and target_origin != self.origin:
            logger.debug(f"Discarding message for {target_origin}: window origin is {self.origin}")
            return
        event = MessageEvent(origin=source.origin if source else "null", data=message, source=source)
        loop = asyncio.get_running_loop()
        for listener in list(self._listeners):
            loop.call_soon(listener, event)


@dataclass
class ViewerTarget:
    name: str
    origin: str
    frame: Optional[BrowsingContext] = None


class Gallery:
    def __init__(
        self,
        window: BrowsingContext,
        api_base_url: str,
        targets: Iterable[ViewerTarget],
    ):
        self.window = window
        self.api_base_url = api_base_url
        self.targets = list(targets)
        for target in self.targets:
            if target.origin == WILDCARD_ORIGIN:
                raise ValueError(f"Viewer target '{target.name}' must name a concrete origin")
        self.ready_viewers: Set[str] = set()

    def start(self) -> None:
        self.window.add_listener(self.handle_message)

    def stop(self) -> None:
        self.window.remove_listener(self.handle_message)

    def handle_message(self, event: MessageEvent) -> None:
        known = {target.origin for target in self.targets}
        if event.origin not in known:
            logger.warning(f"Gallery ignored message from unauthorized origin: {event.origin}")
            return
        if isinstance(event.data, dict) and event.data.get("type") in READY_TYPES:
            self.ready_viewers.add(event.origin)
            logger.info(f"Viewer at {event.origin} is ready ({event.data['type']})")

    def send(self, target: ViewerTarget, envelope: Envelope) -> bool:
        if target.frame is None:
            logger.warning(f"Viewer '{target.name}' has no loaded frame; message not sent")
            return False
        logger.info(f"Sending {envelope.type} to {target.name} at {target.origin}")
        target.frame.post_message(envelope.to_message(), target.origin, source=self.window)
        return True

    def broadcast(self, record: ImageRecord) -> Envelope:
        envelope = show_image_envelope(record, self.api_base_url)
        for target in self.targets:
            self.send(target, envelope)
        return envelope


class ConnectionStatus(str, Enum):
    WAITING = "waiting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class ViewerState:
    current_image: Optional[ImageRecordView] = None
    is_loading: bool = False
    error: Optional[str] = None
    connection_status: ConnectionStatus = ConnectionStatus.WAITING
    history: List[ImageRecordView] = field(default_factory=list)


class Viewer:
    def __init__(
        self,
        window: BrowsingContext,
        allowed_origins: Iterable[str],
        host_origin: str,
        display_delay: float = 0.3,
        ready_type: MessageType = MessageType.VIEWER_READY,
        name: str = "viewer",
    ):
        self.allowed_origins = frozenset(allowed_origins)
        if WILDCARD_ORIGIN in self.allowed_origins or not self.allowed_origins:
            raise ValueError("Viewer allowlist must list concrete sender origins")
        if host_origin == WILDCARD_ORIGIN:
            raise ValueError("Viewer host origin must be a concrete origin")
        self.window = window
        self.host_origin = host_origin
        self.display_delay = display_delay
        self.ready_type = ready_type
        self.name = name
        self.state = ViewerState()
        self._pending: Optional[asyncio.TimerHandle] = None

    def start(self) -> None:
        self.window.add_listener(self.handle_message)
        host = self.window.parent
        if host is None:
            self.state.connection_status = ConnectionStatus.WAITING
            return
        try:
            host.post_message({"type": self.ready_type.value}, self.host_origin, source=self.window)
            self.state.connection_status = ConnectionStatus.CONNECTED
        except RuntimeError as e:
            logger.exception(f"{self.name}: failed to send readiness signal")
            self.state.error = f"Failed to send readiness signal: {e}"
            self.state.connection_status = ConnectionStatus.ERROR

    def stop(self) -> None:
        self.window.remove_listener(self.handle_message)
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def check_origin(self, origin: str) -> None:
        if origin not in self.allowed_origins:
            raise UnauthorizedOriginError(origin)

    def handle_message(self, event: MessageEvent) -> None:
        try:
            self.check_origin(event.origin)
        except UnauthorizedOriginError as e:
            logger.warning(f"{self.name}: {e}")
            return

        try:
            envelope = Envelope.model_validate(event.data)
        except ValidationError:
            logger.warning(f"{self.name}: dropped malformed message from {event.origin}")
            return

        logger.info(f"{self.name} received {envelope.type} from {event.origin}")
        if envelope.type != MessageType.SHOW_IMAGE.value or envelope.data is None:
            return

        self.state.is_loading = True
        self.state.error = None
        self.state.connection_status = ConnectionStatus.CONNECTED
        if self._pending is not None:
            self._pending.cancel()
        loop = asyncio.get_running_loop()
        self._pending = loop.call_later(self.display_delay, self._display, envelope.data)

    def _display(self, image: ImageRecordView) -> None:
        self._pending = None
        self.state.current_image = image
        self.state.history.append(image)
        self.state.is_loading = False


def build_viewer(
    variant: str,
    window: BrowsingContext,
    settings: Settings,
) -> Viewer:
    """Create one of the two configured viewer variants: ``primary`` or ``secondary``."""
    if variant == "primary":
        return Viewer(
            window,
            allowed_origins=[settings.GALLERY_ORIGIN],
            host_origin=settings.GALLERY_ORIGIN,
            display_delay=settings.VIEWER_DISPLAY_DELAY_MS / 1000,
            ready_type=MessageType.VIEWER_READY,
            name="viewer",
        )
    if variant == "secondary":
        return Viewer(
            window,
            allowed_origins=[settings.GALLERY_ORIGIN, settings.VIEWER_ORIGIN],
            host_origin=settings.GALLERY_ORIGIN,
            display_delay=settings.VIEWER2_DISPLAY_DELAY_MS / 1000,
            ready_type=MessageType.VIEWER2_READY,
            name="viewer2",
        )
    raise ValueError(f"Unknown viewer variant: {variant}")


def build_gallery(
    window: BrowsingContext,
    settings: Settings,
    viewer_frame: Optional[BrowsingContext] = None,
    viewer2_frame: Optional[BrowsingContext] = None,
) -> Gallery:
    return Gallery(
        window,
        api_base_url=settings.PUBLIC_BASE_URL,
        targets=[
            ViewerTarget(name="viewer", origin=settings.VIEWER_ORIGIN, frame=viewer_frame),
            ViewerTarget(name="viewer2", origin=settings.VIEWER2_ORIGIN, frame=viewer2_frame),
        ],
    )
