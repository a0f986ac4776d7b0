import asyncio

from tokenstamp.context import PlacementContext
from tokenstamp.events import EventBus, Notification, SessionCancelled


def test_publish_reaches_subscribers_of_that_type_only():
    bus = EventBus()
    notes, cancels = [], []
    bus.subscribe(Notification, notes.append)
    bus.subscribe(SessionCancelled, cancels.append)
    bus.publish(Notification(level="info", message="hi"))
    assert notes == [Notification(level="info", message="hi")]
    assert cancels == []


def test_subscription_close_is_idempotent():
    bus = EventBus()
    seen = []
    sub = bus.subscribe(Notification, seen.append)
    assert bus.subscriber_count(Notification) == 1
    sub.close()
    sub.close()
    assert bus.subscriber_count(Notification) == 0
    bus.publish(Notification(level="info", message="ignored"))
    assert seen == []


def test_failing_subscriber_does_not_block_others():
    bus = EventBus()
    seen = []

    def broken(_event):
        raise RuntimeError("subscriber bug")

    bus.subscribe(Notification, broken)
    bus.subscribe(Notification, seen.append)
    bus.publish(Notification(level="error", message="x"))
    assert len(seen) == 1


def test_hover_suppression_is_reference_counted():
    ctx = PlacementContext()
    ctx.acquire_hover_suppression()
    with ctx.hover_suppression():
        assert ctx.hover_suppressed
    assert ctx.hover_suppressed
    ctx.release_hover_suppression()
    ctx.release_hover_suppression()
    assert not ctx.hover_suppressed


def test_scrolling_text_suppressed_only_inside_block():
    ctx = PlacementContext()

    async def main():
        async with ctx.suppress_scrolling_text():
            assert ctx.scrolling_text_suppressed
        assert not ctx.scrolling_text_suppressed

    asyncio.run(main())
