"""
Tests for ProctorSession: lifecycle transitions, countdown, sampling and alerting.
"""
import asyncio
import threading

import numpy as np
import pytest

from conftest import ABSENT_LIKE, NORMAL_LIKE, FakeVideo, fast_config, phone, seed_dataset
from examguard.adapters import ObjectDetectorAdapter, PostureClassifierAdapter
from examguard.errors import CameraUnavailableError, InvalidTransitionError, ModelInferenceError, NotReadyError
from examguard.models import AlertKind, Label, SessionPhase, SessionState
from examguard.session import ProctorSession


async def finish(session: ProctorSession, timeout: float = 5.0) -> SessionState:
    return await asyncio.wait_for(session.wait_finished(), timeout)


@pytest.mark.asyncio
class TestStartTest:
    async def test_without_dataset_raises_not_ready(self, session, player):
        with pytest.raises(NotReadyError):
            session.start_test(1)

        assert session.state == SessionState.idle()
        assert player.played == []
        assert not session.posture_sampler.running
        assert not session.detection_sampler.running

    async def test_closed_camera(self, session, knn, video):
        seed_dataset(knn)
        video.is_open = False

        with pytest.raises(CameraUnavailableError):
            session.start_test(1)
        assert session.phase is not SessionPhase.TESTING

    async def test_duration_must_be_positive(self, session, knn):
        seed_dataset(knn)

        with pytest.raises(ValueError):
            session.start_test(0)
        assert session.phase is not SessionPhase.TESTING

    async def test_cannot_start_twice(self, session, knn):
        seed_dataset(knn)
        session.start_test(1)

        with pytest.raises(InvalidTransitionError):
            session.start_test(1)
        await session.shutdown()

    async def test_one_minute_countdown_runs_to_finished(self, session, knn, player):
        seed_dataset(knn)
        states = []
        session.on_state_change = states.append

        session.start_test(1)
        assert session.state == SessionState.testing(60)

        final = await finish(session)

        assert final == SessionState.finished()
        assert player.count(AlertKind.TEST_STARTED) == 1
        assert player.count(AlertKind.TEST_ENDED) == 1
        assert player.played == [AlertKind.TEST_STARTED, AlertKind.TEST_ENDED]
        remaining = [s.remaining_seconds for s in states if s.phase is SessionPhase.TESTING]
        assert remaining == list(range(60, -1, -1))
        assert not session.posture_sampler.running
        assert not session.detection_sampler.running
        await session.shutdown()

    async def test_lifecycle_cues_play_even_while_still_sounding(self, session, knn, player):
        seed_dataset(knn)
        player.playing = {AlertKind.TEST_STARTED, AlertKind.TEST_ENDED}

        session.start_test(0.05)
        await finish(session)

        assert player.count(AlertKind.TEST_STARTED) == 1
        assert player.count(AlertKind.TEST_ENDED) == 1
        assert session.stats.alerts[AlertKind.TEST_STARTED] == 1
        assert session.stats.alerts[AlertKind.TEST_ENDED] == 1
        await session.shutdown()

    async def test_finished_requires_reset_before_next_test(self, session, knn):
        seed_dataset(knn)
        session.start_test(0.05)
        await finish(session)

        with pytest.raises(InvalidTransitionError):
            session.start_test(1)

        session.reset()
        session.start_test(0.05)
        assert session.phase is SessionPhase.TESTING
        await session.shutdown()


@pytest.mark.asyncio
class TestAlerting:
    async def test_phone_alerts_during_test(self, session, knn, detector, player):
        seed_dataset(knn)
        detector.objects = [phone(0.2)]

        session.start_test(1)
        await asyncio.sleep(0.05)

        assert player.count(AlertKind.PHONE_DETECTED) >= 1
        assert session.stats.alerts[AlertKind.PHONE_DETECTED] == player.count(AlertKind.PHONE_DETECTED)
        await session.shutdown()

    async def test_playing_cue_suppresses_repeat(self, session, knn, detector, player):
        seed_dataset(knn)
        detector.objects = [phone()]
        player.playing.add(AlertKind.PHONE_DETECTED)

        session.start_test(1)
        await asyncio.sleep(0.05)

        assert player.count(AlertKind.PHONE_DETECTED) == 0
        assert session.stats.detection_ticks >= 3
        await session.shutdown()

    async def test_absent_posture_alerts_movement(self, session, knn, embedder, player):
        seed_dataset(knn)
        embedder.vector = ABSENT_LIKE

        session.start_test(1)
        await asyncio.sleep(0.05)

        assert player.count(AlertKind.NO_MOVEMENT_ALLOWED) >= 1
        assert session.current_behavior == Label.ABSENT
        await session.shutdown()

    async def test_preview_updates_display_without_alerting(self, session, knn, embedder, detector, player):
        seed_dataset(knn)
        embedder.vector = ABSENT_LIKE
        detector.objects = [phone()]

        session.start_preview()
        await asyncio.sleep(0.05)
        session.stop_preview()
        await session.shutdown()

        assert player.played == []
        assert session.stats.discarded_results > 0

    async def test_preview_sets_current_state(self, session, knn, embedder, detector):
        seed_dataset(knn)
        embedder.vector = ABSENT_LIKE
        detector.objects = [phone()]

        session.start_preview()
        await asyncio.sleep(0.05)
        session.stop_preview()
        await session.posture_sampler.drain()
        await session.detection_sampler.drain()

        assert session.current_behavior == Label.ABSENT
        assert session.current_detections == [phone()]

    async def test_result_arriving_after_reset_is_discarded(self, video, embedder, knn, dispatcher, player):
        gate = threading.Event()

        class GatedDetector:
            def detect(self, frame):
                gate.wait(2.0)
                return [phone()]

            def close(self):
                return None

        session = ProctorSession(
            video=video,
            classifier=PostureClassifierAdapter(embedder, knn),
            detector=ObjectDetectorAdapter(GatedDetector()),
            dispatcher=dispatcher,
            config=fast_config(detection_interval_ms=10),
        )
        seed_dataset(knn)
        session.start_test(1)
        await asyncio.sleep(0.03)

        session.reset()
        gate.set()
        await session.posture_sampler.drain()
        await session.detection_sampler.drain()

        assert player.count(AlertKind.PHONE_DETECTED) == 0
        assert session.stats.discarded_results >= 1
        assert session.state == SessionState.idle()

    async def test_inference_failure_does_not_stop_the_test(self, session, knn, embedder, detector, player):
        seed_dataset(knn)
        embedder.fail = True
        detector.fail = True

        session.start_test(0.05)
        final = await finish(session)

        assert final == SessionState.finished()
        assert session.stats.inference_failures > 0
        assert player.played == [AlertKind.TEST_STARTED, AlertKind.TEST_ENDED]
        await session.shutdown()

    async def test_video_not_ready_skips_ticks(self, session, knn, video, player):
        seed_dataset(knn)
        video.ready = False

        session.start_test(1)
        await asyncio.sleep(0.03)

        assert session.stats.skipped_ticks > 0
        assert session.stats.posture_ticks == 0
        assert player.played == [AlertKind.TEST_STARTED]
        await session.shutdown()


@pytest.mark.asyncio
class TestReset:
    async def test_reset_during_test(self, session, knn, detector, player, dispatcher):
        seed_dataset(knn)
        detector.objects = [phone()]
        session.start_test(1)
        await asyncio.sleep(0.03)

        session.reset()

        assert session.state == SessionState.idle()
        assert dispatcher.cooldowns == {}
        assert not session.posture_sampler.running
        assert not session.detection_sampler.running
        assert await finish(session) == SessionState.idle()

        await session.posture_sampler.drain()
        await session.detection_sampler.drain()
        played = list(player.played)
        await asyncio.sleep(0.05)
        assert player.played == played
        assert AlertKind.TEST_ENDED not in played

    async def test_reset_from_ready(self, session, knn, tmp_path):
        seed_dataset(knn)
        session.load_dataset(session.save_dataset(tmp_path / "dataset.json"))
        assert session.state == SessionState.ready()

        session.reset()

        assert session.state == SessionState.idle()

    async def test_reset_from_finished(self, session, knn, dispatcher):
        seed_dataset(knn)
        session.start_test(0.05)
        await finish(session)

        session.reset()

        assert session.state == SessionState.idle()
        assert dispatcher.cooldowns == {}

    async def test_reset_from_idle_is_harmless(self, session, player):
        session.reset()

        assert session.state == SessionState.idle()
        assert player.played == []

    async def test_reset_aborts_training(self, video, embedder, detector, knn, dispatcher):
        session = ProctorSession(
            video=video,
            classifier=PostureClassifierAdapter(embedder, knn),
            detector=ObjectDetectorAdapter(detector),
            dispatcher=dispatcher,
            config=fast_config(examples_per_label=50, training_interval_ms=10),
        )
        task = asyncio.create_task(session.train(Label.NORMAL_POSTURE))
        await asyncio.sleep(0.05)
        assert session.phase is SessionPhase.TRAINING

        session.reset()
        await asyncio.wait_for(task, 2.0)

        assert session.state == SessionState.idle()
        assert 0 < knn.num_examples < 50


@pytest.mark.asyncio
class TestTraining:
    async def test_progress_then_ready_once_required_labels_trained(self, session, embedder, knn):
        states = []
        session.on_state_change = states.append

        await session.train(Label.NORMAL_POSTURE)

        progress = [s.progress for s in states if s.phase is SessionPhase.TRAINING]
        assert progress == [0, 1, 2, 3, 4, 5]
        assert session.state == SessionState.idle()

        embedder.vector = ABSENT_LIKE
        await session.train(Label.ABSENT)

        assert session.state == SessionState.ready()
        assert knn.class_example_count() == {Label.NORMAL_POSTURE: 5, Label.ABSENT: 5}

    async def test_training_without_frames(self, session, video, knn):
        video.ready = False

        with pytest.raises(CameraUnavailableError):
            await session.train(Label.HEAD_LEFT)

        assert session.state == SessionState.idle()
        assert knn.num_examples == 0

    async def test_embedding_failure_leaves_training(self, session, embedder, knn):
        embedder.fail = True

        with pytest.raises(ModelInferenceError):
            await session.train(Label.ABSENT)

        assert session.state == SessionState.idle()
        embedder.fail = False
        seed_dataset(knn)
        session.start_test(1)
        assert session.phase is SessionPhase.TESTING
        await session.shutdown()

    async def test_wrong_embedding_size_settles_back_to_ready(self, session, embedder, knn):
        seed_dataset(knn)
        embedder.vector = np.ones(3, dtype=np.float32)

        with pytest.raises(ModelInferenceError):
            await session.train(Label.HEAD_LEFT)

        assert session.state == SessionState.ready()
        assert Label.HEAD_LEFT not in knn.class_example_count()

    async def test_stale_training_run_stops_writing_progress(self, video, embedder, detector, knn, dispatcher):
        session = ProctorSession(
            video=video,
            classifier=PostureClassifierAdapter(embedder, knn),
            detector=ObjectDetectorAdapter(detector),
            dispatcher=dispatcher,
            config=fast_config(examples_per_label=5, training_interval_ms=20),
        )
        first = asyncio.create_task(session.train(Label.NORMAL_POSTURE))
        await asyncio.sleep(0.03)
        session.reset()

        states = []
        session.on_state_change = states.append
        await asyncio.wait_for(session.train(Label.NORMAL_POSTURE), 2.0)
        await asyncio.wait_for(first, 2.0)

        progress = [s.progress for s in states if s.phase is SessionPhase.TRAINING]
        assert progress == [0, 1, 2, 3, 4, 5]
        assert states[-1] == SessionState.idle()
        assert session.state == SessionState.idle()

    async def test_cannot_train_during_test(self, session, knn):
        seed_dataset(knn)
        session.start_test(1)

        with pytest.raises(InvalidTransitionError):
            await session.train(Label.HEAD_LEFT)
        await session.shutdown()

    async def test_cannot_load_dataset_during_test(self, session, knn, tmp_path):
        seed_dataset(knn)
        path = session.save_dataset(tmp_path / "dataset.json")
        session.start_test(1)

        with pytest.raises(InvalidTransitionError):
            session.load_dataset(path)
        await session.shutdown()


@pytest.mark.asyncio
async def test_train_save_reset_load_then_classify(tmp_path, player, dispatcher, embedder, detector, knn):
    session = ProctorSession(
        video=FakeVideo(),
        classifier=PostureClassifierAdapter(embedder, knn),
        detector=ObjectDetectorAdapter(detector),
        dispatcher=dispatcher,
        config=fast_config(examples_per_label=50),
    )
    embedder.vector = NORMAL_LIKE
    await session.train(Label.NORMAL_POSTURE)
    embedder.vector = ABSENT_LIKE
    await session.train(Label.ABSENT)
    assert session.state == SessionState.ready()

    path = session.save_dataset(tmp_path / "dataset.json")
    session.reset()
    knn.clear()
    session.load_dataset(path)

    assert session.state == SessionState.ready()
    assert knn.class_example_count() == {Label.NORMAL_POSTURE: 50, Label.ABSENT: 50}

    embedder.vector = ABSENT_LIKE + np.float32(0.01)
    result = await session.classifier.classify(np.zeros((4, 4, 3), dtype=np.uint8))

    assert result.label == Label.ABSENT
    assert result.confidence > 0.8
