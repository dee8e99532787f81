import asyncio

import pytest

from config import Settings
from messaging import (
    BrowsingContext,
    ConnectionStatus,
    Envelope,
    Gallery,
    MessageType,
    Viewer,
    ViewerTarget,
    build_gallery,
    build_viewer,
    show_image_envelope,
)
from schemas import ImageRecord

GALLERY = "http://localhost:3003"
VIEWER = "http://localhost:3004"
VIEWER2 = "http://localhost:3005"
API = "http://localhost:3001"
DELAY = 0.01


@pytest.fixture
def record() -> ImageRecord:
    return ImageRecord.from_stored_file("1714564800000_cat.png", 2000)

@pytest.fixture
def gallery_window() -> BrowsingContext:
    return BrowsingContext(GALLERY)

@pytest.fixture
def viewer_window(gallery_window) -> BrowsingContext:
    return BrowsingContext(VIEWER, parent=gallery_window)


async def settle(delay: float = DELAY * 5):
    await asyncio.sleep(delay)


def test_show_image_envelope_carries_full_url(record):
    message = show_image_envelope(record, API + "/").to_message()

    assert message["type"] == "SHOW_IMAGE"
    assert message["data"]["fullUrl"] == "http://localhost:3001/uploads/1714564800000_cat.png"
    assert message["data"]["originalname"] == "cat.png"
    assert message["data"]["url"] == "/uploads/1714564800000_cat.png"
    assert message["data"]["id"] == "1714564800000"

def test_envelope_parses_wire_message(record):
    message = show_image_envelope(record, API).to_message()

    envelope = Envelope.model_validate(message)

    assert envelope.type == MessageType.SHOW_IMAGE.value
    assert envelope.data.full_url.endswith("/uploads/1714564800000_cat.png")

@pytest.mark.asyncio
async def test_viewer_displays_image_from_allowed_origin_after_delay(record, gallery_window, viewer_window):
    viewer = Viewer(viewer_window, [GALLERY], host_origin=GALLERY, display_delay=DELAY)
    viewer.start()
    gallery = Gallery(gallery_window, API, [ViewerTarget("viewer", VIEWER, viewer_window)])

    gallery.broadcast(record)
    await asyncio.sleep(0)

    assert viewer.state.is_loading is True
    assert viewer.state.current_image is None

    await settle()

    assert viewer.state.is_loading is False
    assert viewer.state.current_image.id == record.id
    assert viewer.state.current_image.full_url == f"{API}{record.public_path}"
    assert viewer.state.connection_status == ConnectionStatus.CONNECTED

@pytest.mark.asyncio
async def test_viewer_ignores_disallowed_origin(record, viewer_window):
    viewer = Viewer(viewer_window, [GALLERY], host_origin=GALLERY, display_delay=DELAY)
    viewer.window.add_listener(viewer.handle_message)
    intruder = BrowsingContext("http://evil.example")

    viewer_window.post_message(show_image_envelope(record, API).to_message(), VIEWER, source=intruder)
    await settle()

    assert viewer.state.current_image is None
    assert viewer.state.is_loading is False
    assert viewer.state.connection_status == ConnectionStatus.WAITING

@pytest.mark.asyncio
async def test_viewer_drops_malformed_messages(viewer_window, gallery_window):
    viewer = Viewer(viewer_window, [GALLERY], host_origin=GALLERY, display_delay=DELAY)
    viewer.window.add_listener(viewer.handle_message)

    viewer_window.post_message("not an envelope", VIEWER, source=gallery_window)
    viewer_window.post_message({"type": "SHOW_IMAGE"}, VIEWER, source=gallery_window)
    viewer_window.post_message({"type": "SHOW_IMAGE", "data": {"id": "1"}}, VIEWER, source=gallery_window)
    await settle()

    assert viewer.state.current_image is None
    assert viewer.state.is_loading is False

@pytest.mark.asyncio
async def test_message_addressed_to_other_origin_is_not_delivered(record, gallery_window, viewer_window):
    viewer = Viewer(viewer_window, [GALLERY], host_origin=GALLERY, display_delay=DELAY)
    viewer.start()
    gallery = Gallery(gallery_window, API, [ViewerTarget("viewer", VIEWER2, viewer_window)])

    gallery.broadcast(record)
    await settle()

    assert viewer.state.current_image is None

@pytest.mark.asyncio
async def test_viewer_started_after_broadcast_receives_nothing(record, gallery_window, viewer_window):
    gallery = Gallery(gallery_window, API, [ViewerTarget("viewer", VIEWER, viewer_window)])
    gallery.broadcast(record)
    await settle()

    viewer = Viewer(viewer_window, [GALLERY], host_origin=GALLERY, display_delay=DELAY)
    viewer.start()
    await settle()

    assert viewer.state.current_image is None

@pytest.mark.asyncio
async def test_gallery_skips_target_without_frame(record, gallery_window):
    gallery = Gallery(gallery_window, API, [ViewerTarget("viewer", VIEWER)])

    envelope = gallery.broadcast(record)

    assert envelope.type == "SHOW_IMAGE"
    assert gallery.send(gallery.targets[0], envelope) is False

@pytest.mark.asyncio
async def test_readiness_signal_reaches_gallery(gallery_window, viewer_window):
    gallery = Gallery(gallery_window, API, [ViewerTarget("viewer", VIEWER, viewer_window)])
    gallery.start()
    viewer = Viewer(viewer_window, [GALLERY], host_origin=GALLERY, display_delay=DELAY)

    viewer.start()
    await settle()

    assert gallery.ready_viewers == {VIEWER}
    assert viewer.state.connection_status == ConnectionStatus.CONNECTED

@pytest.mark.asyncio
async def test_standalone_viewer_waits(viewer_window):
    standalone = BrowsingContext(VIEWER)
    viewer = Viewer(standalone, [GALLERY], host_origin=GALLERY)

    viewer.start()

    assert viewer.state.connection_status == ConnectionStatus.WAITING

def test_viewer_rejects_wildcard_origins(viewer_window):
    with pytest.raises(ValueError):
        Viewer(viewer_window, ["*"], host_origin=GALLERY)
    with pytest.raises(ValueError):
        Viewer(viewer_window, [GALLERY], host_origin="*")

def test_gallery_rejects_wildcard_target(gallery_window):
    with pytest.raises(ValueError):
        Gallery(gallery_window, API, [ViewerTarget("viewer", "*")])

@pytest.mark.asyncio
async def test_configured_viewers_receive_broadcast(record, gallery_window):
    settings = Settings(_env_file=None, VIEWER_DISPLAY_DELAY_MS=5, VIEWER2_DISPLAY_DELAY_MS=10)
    viewer_window = BrowsingContext(settings.VIEWER_ORIGIN, parent=gallery_window)
    viewer2_window = BrowsingContext(settings.VIEWER2_ORIGIN, parent=gallery_window)
    viewer = build_viewer("primary", viewer_window, settings)
    viewer2 = build_viewer("secondary", viewer2_window, settings)
    gallery = build_gallery(gallery_window, settings, viewer_window, viewer2_window)
    gallery.start()
    viewer.start()
    viewer2.start()
    await asyncio.sleep(0.01)

    gallery.broadcast(record)
    await asyncio.sleep(0.1)

    assert viewer.state.current_image.id == record.id
    assert viewer2.state.current_image.id == record.id
    assert viewer.display_delay < viewer2.display_delay
    assert gallery.ready_viewers == {settings.VIEWER_ORIGIN, settings.VIEWER2_ORIGIN}

@pytest.mark.asyncio
async def test_secondary_viewer_accepts_primary_viewer_origin(record):
    settings = Settings(_env_file=None, VIEWER2_DISPLAY_DELAY_MS=5)
    primary_window = BrowsingContext(settings.VIEWER_ORIGIN)
    viewer2_window = BrowsingContext(settings.VIEWER2_ORIGIN)
    viewer2 = build_viewer("secondary", viewer2_window, settings)
    viewer2.start()

    viewer2_window.post_message(
        show_image_envelope(record, settings.PUBLIC_BASE_URL).to_message(),
        settings.VIEWER2_ORIGIN,
        source=primary_window,
    )
    await asyncio.sleep(0.05)

    assert viewer2.state.current_image.id == record.id

def test_unknown_viewer_variant(viewer_window):
    with pytest.raises(ValueError):
        build_viewer("tertiary", viewer_window, Settings(_env_file=None))

def test_viewer_records_error_when_readiness_signal_fails(viewer_window):
    viewer = Viewer(viewer_window, [GALLERY], host_origin=GALLERY)

    viewer.start()

    assert viewer.state.connection_status == ConnectionStatus.ERROR
    assert viewer.state.error.startswith("Failed to send readiness signal")
