import asyncio

import pytest

from capture_fakes import FakeDevices, fast_settings
from interview_room.capture.devices import PreviewSink
from interview_room.capture.manager import HEALTH_JOB, MediaCaptureManager
from interview_room.capture.media import TrackKind
from interview_room.capture.settings import CAMERA_DISCONNECTED_MESSAGE, DEVICES_UNAVAILABLE_MESSAGE
from interview_room.errors import AcquisitionTimeout, DeviceUnavailable


def _manager(devices=None, **settings) -> MediaCaptureManager:
    return MediaCaptureManager(devices or FakeDevices(), sink=PreviewSink(), settings=fast_settings(**settings))


@pytest.mark.asyncio
async def test_acquire_falls_back_to_minimal_tier():
    devices = FakeDevices(fail_tiers={"ideal"})
    manager = _manager(devices)

    stream = await manager.acquire()

    assert devices.calls == ["ideal", "minimal"]
    assert len(stream.get_tracks()) >= 1
    assert stream.has_live_video()
    assert stream.protected
    assert manager.handle.sink.src_object is stream
    assert manager.status.constraint_tier == "minimal"
    assert manager.status.video_track_active is True
    await manager.shutdown()


@pytest.mark.asyncio
async def test_acquire_audio_only_and_total_failure():
    devices = FakeDevices(fail_tiers={"ideal", "minimal"})
    manager = _manager(devices)
    stream = await manager.acquire()
    assert stream.get_video_tracks() == []
    assert len(stream.get_audio_tracks()) == 1
    await manager.shutdown()

    devices = FakeDevices(fail_tiers={"ideal", "minimal", "audio_only"})
    manager = _manager(devices)
    with pytest.raises(DeviceUnavailable):
        await manager.acquire()
    assert manager.status.stream_error == DEVICES_UNAVAILABLE_MESSAGE
    assert manager.status.is_initializing is False
    await manager.shutdown()


@pytest.mark.asyncio
async def test_concurrent_acquire_shares_one_request():
    devices = FakeDevices()
    devices.gate = asyncio.Event()
    manager = _manager(devices)

    first = asyncio.create_task(manager.acquire())
    second = asyncio.create_task(manager.acquire())
    await asyncio.sleep(0.01)
    assert manager.acquiring is True
    devices.gate.set()

    one, two = await asyncio.gather(first, second)
    assert one is two
    assert devices.calls == ["ideal"]

    # an already-held live stream is reused
    assert await manager.acquire() is one
    assert devices.calls == ["ideal"]
    await manager.shutdown()


@pytest.mark.asyncio
async def test_waiting_on_stuck_acquisition_times_out():
    devices = FakeDevices()
    devices.gate = asyncio.Event()
    manager = _manager(devices, acquire_timeout_sec=0.05)

    first = asyncio.create_task(manager.acquire())
    await asyncio.sleep(0.01)
    with pytest.raises(AcquisitionTimeout):
        await manager.acquire()

    devices.gate.set()
    assert (await first).active
    await manager.shutdown()


@pytest.mark.asyncio
async def test_toggle_track_is_idempotent_over_two_calls():
    manager = _manager()
    stream = await manager.acquire()
    audio = stream.get_audio_tracks()[0]
    tracks_before = stream.get_tracks()

    assert manager.toggle_track(TrackKind.AUDIO) is False
    assert audio.enabled is False
    assert manager.status.is_mic_muted is True

    assert manager.toggle_track("audio") is True
    assert audio.enabled is True
    assert manager.status.is_mic_muted is False

    assert stream.get_tracks() == tracks_before
    assert all(track.is_live for track in stream.get_tracks())
    await manager.shutdown()


@pytest.mark.asyncio
async def test_toggle_without_stream_is_noop():
    manager = _manager()
    assert manager.toggle_track(TrackKind.VIDEO) is False
    await manager.shutdown()


@pytest.mark.asyncio
async def test_protected_stream_only_released_by_manager():
    manager = _manager()
    stream = await manager.acquire()

    assert stream.stop() is False
    assert all(track.is_live for track in stream.get_tracks())

    manager.release()
    assert all(not track.is_live for track in stream.get_tracks())
    assert manager.stream is None
    assert manager.handle.sink.src_object is None
    await manager.shutdown()


@pytest.mark.asyncio
async def test_ended_track_triggers_full_stream_replacement():
    devices = FakeDevices()
    manager = _manager(devices)
    original = await manager.acquire()

    devices.camera.disconnect()
    assert manager.status.video_track_active is False

    await asyncio.sleep(0.1)

    replacement = manager.stream
    assert replacement is not original
    assert replacement.has_live_video()
    assert "video_only" in devices.calls
    assert all(not track.is_live for track in original.get_tracks())
    assert manager.status.degraded is False
    await manager.shutdown()


@pytest.mark.asyncio
async def test_health_check_promotes_backup_clone():
    devices = FakeDevices()
    manager = _manager(devices)
    original = await manager.acquire()
    backup = manager.handle.backup

    # a track that dies without an ended event
    original.get_video_tracks()[0].stop()
    await manager.check_health()
    assert manager.status.video_track_active is False

    await asyncio.sleep(0.05)

    assert manager.stream is backup
    assert manager.stream.has_live_video()
    assert manager.handle.sink.src_object is backup
    assert devices.calls == ["ideal"]
    await manager.shutdown()


@pytest.mark.asyncio
async def test_health_check_acquires_fresh_stream_when_backup_is_dead():
    devices = FakeDevices()
    manager = _manager(devices)
    original = await manager.acquire()

    original.get_video_tracks()[0].stop()
    manager.handle.backup.get_video_tracks()[0].stop()
    await manager.check_health()
    await asyncio.sleep(0.05)

    assert manager.stream is not original
    assert manager.stream.has_live_video()
    assert devices.calls == ["ideal", "ideal"]
    await manager.shutdown()


@pytest.mark.asyncio
async def test_exhausted_recovery_asks_for_manual_reconnect():
    devices = FakeDevices()
    manager = _manager(devices)
    original = await manager.acquire()

    devices.unavailable = True
    original.get_video_tracks()[0].stop()
    manager.handle.backup.get_video_tracks()[0].stop()
    await manager.check_health()
    await asyncio.sleep(0.2)

    assert manager.status.needs_manual_reconnect is True
    assert manager.status.stream_error == CAMERA_DISCONNECTED_MESSAGE

    devices.unavailable = False
    stream = await manager.reconnect()
    assert stream.has_live_video()
    assert manager.status.needs_manual_reconnect is False
    assert manager.status.stream_error is None
    await manager.shutdown()


@pytest.mark.asyncio
async def test_health_check_skipped_while_camera_toggled_off():
    devices = FakeDevices()
    manager = _manager(devices)
    stream = await manager.acquire()

    manager.toggle_track(TrackKind.VIDEO)
    await manager.check_health()
    await asyncio.sleep(0.05)

    assert manager.stream is stream
    assert devices.calls == ["ideal"]
    await manager.shutdown()


@pytest.mark.asyncio
async def test_muted_track_reattaches_sink_after_grace():
    manager = _manager()
    stream = await manager.acquire()
    sink = manager.handle.sink

    stream.get_video_tracks()[0].set_muted(True)
    assert manager.status.video_track_active is False
    await asyncio.sleep(0.05)
    assert sink.play_count == 1
    assert sink.src_object is stream

    # unmuted inside the grace window: no reattach
    track = stream.get_video_tracks()[0]
    track.set_muted(False)
    track.set_muted(True)
    track.set_muted(False)
    await asyncio.sleep(0.05)
    assert sink.play_count == 1
    assert manager.status.video_track_active is True
    assert manager.status.degraded is False
    await manager.shutdown()


@pytest.mark.asyncio
async def test_shutdown_is_idempotent_and_final():
    manager = _manager()
    stream = await manager.acquire()

    await manager.shutdown()
    await manager.shutdown()

    assert manager.scheduler.closed is True
    assert not stream.active
    with pytest.raises(DeviceUnavailable):
        await manager.acquire()


@pytest.mark.asyncio
async def test_supports_capture_requires_devices_and_recorder():
    assert MediaCaptureManager(None).supports_capture() is False
    assert MediaCaptureManager(FakeDevices(), recorder_available=False).supports_capture() is False
    manager = MediaCaptureManager(FakeDevices())
    assert manager.supports_capture() is True
    with pytest.raises(DeviceUnavailable):
        await MediaCaptureManager(None).acquire()
    await manager.shutdown()


@pytest.mark.asyncio
async def test_release_during_running_recovery_does_not_reacquire():
    devices = FakeDevices()
    manager = _manager(devices)
    await manager.acquire()

    devices.gate = asyncio.Event()
    devices.camera.disconnect()
    await asyncio.sleep(0.05)
    assert devices.calls == ["ideal", "video_only"]

    manager.release()
    devices.gate.set()
    await asyncio.sleep(0.1)

    assert manager.stream is None
    assert devices.calls == ["ideal", "video_only"]
    assert devices.camera.live_tracks() == []
    assert devices.microphone.live_tracks() == []
    assert not manager.scheduler.is_scheduled(HEALTH_JOB)
    await manager.shutdown()


@pytest.mark.asyncio
async def test_release_during_acquisition_discards_the_late_stream():
    devices = FakeDevices()
    devices.gate = asyncio.Event()
    manager = _manager(devices)

    pending = asyncio.create_task(manager.acquire())
    await asyncio.sleep(0.01)
    manager.release()
    assert manager.acquiring is False
    assert manager.status.is_initializing is False

    devices.gate.set()
    with pytest.raises(DeviceUnavailable):
        await pending

    assert manager.stream is None
    assert manager.handle.sink.src_object is None
    assert devices.camera.live_tracks() == []
    assert devices.microphone.live_tracks() == []
    assert not manager.scheduler.is_scheduled(HEALTH_JOB)

    # an explicit acquire after release still works
    stream = await manager.acquire()
    assert stream.has_live_video()
    await manager.shutdown()


@pytest.mark.asyncio
async def test_health_check_is_noop_while_acquisition_in_flight():
    devices = FakeDevices()
    manager = _manager(devices)
    stream = await manager.acquire()
    stream.get_video_tracks()[0].stop()

    devices.gate = asyncio.Event()
    pending = asyncio.create_task(manager.reconnect())
    await asyncio.sleep(0.01)
    assert manager.acquiring is True

    await manager.check_health()
    await asyncio.sleep(0.03)

    assert manager.stream is stream
    assert manager._health_recovery.attempts == 0
    assert not manager._health_recovery.busy
    assert devices.calls == ["ideal", "ideal"]

    devices.gate.set()
    replacement = await pending
    assert manager.stream is replacement
    assert replacement.has_live_video()
    await manager.shutdown()
