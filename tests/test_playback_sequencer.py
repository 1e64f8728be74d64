"""
Playback sequencer tests.

Tests voice/stimulus ordering, the delayed stimulus voice, fullscreen
after the first frame, media error statuses, and stop behavior.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio
import unittest

from services.playback_sequencer import (
    PlaybackSequencer,
    Stimulus,
    VIDEO_ERROR_STATUS,
    VOICE_FINISHED_STATUS,
)
from tests.fixtures.fakes import FakeAudio, FakeContainer, FakeVideo, wait_until


def resolve(path):
    return f"http://api.test/{path.lstrip('/')}"


class SequencerTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.active = True
        self.statuses = []
        self.stimuli = []
        self.container = FakeContainer()
        self.video = FakeVideo(self.container)
        self.sequencer = self._sequencer()

    def _sequencer(self, voice_delay=0.05, settle=0.03):
        return PlaybackSequencer(
            video=self.video,
            container=self.container,
            on_status=self.statuses.append,
            on_stimulus=self.stimuli.append,
            is_active=lambda: self.active,
            audio_factory=FakeAudio,
            resolve_url=resolve,
            voice_delay_sec=voice_delay,
            fullscreen_settle_sec=settle,
        )


class TestVoice(SequencerTestCase):

    async def test_play_voice_resolves_url_and_plays(self):
        audio = self.sequencer.play_voice("/v/1.mp3")
        await asyncio.sleep(0)
        self.assertEqual(audio.url, "http://api.test/v/1.mp3")
        self.assertTrue(audio.played)

    async def test_new_voice_stops_previous_one(self):
        first = self.sequencer.play_voice("/v/1.mp3")
        second = self.sequencer.play_voice("/v/2.mp3")
        await asyncio.sleep(0)
        self.assertTrue(first.paused)
        self.assertIs(self.sequencer.audio, second)

    async def test_missing_voice_url_is_silent(self):
        self.assertIsNone(self.sequencer.play_voice(None))
        self.assertIsNone(self.sequencer.play_voice(""))
        self.assertIsNone(self.sequencer.audio)

    async def test_voice_end_sets_waiting_status(self):
        audio = self.sequencer.play_voice("/v/1.mp3")
        await asyncio.sleep(0)
        audio.finish()
        self.assertEqual(self.statuses[-1], VOICE_FINISHED_STATUS)

    async def test_superseded_voice_end_is_ignored(self):
        first = self.sequencer.play_voice("/v/1.mp3")
        self.sequencer.play_voice("/v/2.mp3")
        first.finish()
        self.assertNotIn(VOICE_FINISHED_STATUS, self.statuses)

    async def test_voice_error_sets_status(self):
        audio = self.sequencer.play_voice("/v/1.mp3")
        await asyncio.sleep(0)
        audio.fail("404 Not Found")
        self.assertEqual(self.statuses[-1], "Voice playback error: 404 Not Found")


class TestStimulus(SequencerTestCase):

    async def test_play_stimulus_sets_stimulus_status_and_loads_video(self):
        stimulus = self.sequencer.play_stimulus("/s/2.mp4", "Color Card")
        await asyncio.sleep(0)
        self.assertEqual(stimulus, Stimulus(url="http://api.test/s/2.mp4", name="Color Card"))
        self.assertEqual(self.stimuli, [stimulus])
        self.assertEqual(self.statuses, ["Playing stimulus: Color Card"])
        self.assertEqual(self.video.loads, ["http://api.test/s/2.mp4"])
        self.assertEqual(self.video.plays, 1)

    async def test_stimulus_voice_starts_after_delay(self):
        self.sequencer.play_stimulus("/s/2.mp4", "Color Card", voice_url="/v/2.mp3")
        await asyncio.sleep(0.01)
        self.assertIsNone(self.sequencer.audio)
        self.assertTrue(await wait_until(lambda: self.sequencer.audio is not None))
        self.assertEqual(self.sequencer.audio.url, "http://api.test/v/2.mp3")

    async def test_later_voice_cancels_pending_stimulus_voice(self):
        self.sequencer.play_stimulus("/s/2.mp4", "Color Card", voice_url="/v/2.mp3")
        self.sequencer.play_voice("/v/3.mp3")
        await asyncio.sleep(0.15)
        self.assertEqual(self.sequencer.audio.url, "http://api.test/v/3.mp3")

    async def test_next_stimulus_replaces_pending_stimulus_voice(self):
        created = len(FakeAudio.created)
        self.sequencer.play_stimulus("/s/2.mp4", "Color Card", voice_url="/v/2.mp3")
        self.sequencer.play_stimulus("/s/4.mp4", "Shapes", voice_url="/v/4.mp3")
        await asyncio.sleep(0.15)
        self.assertEqual([a.url for a in FakeAudio.created[created:]], ["http://api.test/v/4.mp3"])
        self.assertEqual(self.sequencer.audio.url, "http://api.test/v/4.mp3")

    async def test_stimulus_without_voice_plays_no_audio(self):
        self.sequencer.play_stimulus("/s/2.mp4", "Color Card")
        await asyncio.sleep(0.1)
        self.assertIsNone(self.sequencer.audio)

    async def test_fullscreen_after_first_frame(self):
        self.sequencer.play_stimulus("/s/2.mp4", "Color Card")
        await asyncio.sleep(0)
        self.video.fire("playing")
        self.assertEqual(self.video.fullscreen_requests, 0)
        self.assertTrue(await wait_until(lambda: self.video.fullscreen_requests == 1))
        self.assertEqual(self.container.fullscreen_requests, 0)

    async def test_playing_listener_fires_once_per_stimulus(self):
        self.sequencer.play_stimulus("/s/2.mp4", "Color Card")
        await asyncio.sleep(0)
        self.video.fire("playing")
        self.video.fire("playing")
        await asyncio.sleep(0.1)
        self.assertEqual(self.video.fullscreen_requests, 1)

    async def test_fullscreen_falls_back_to_container(self):
        self.assertTrue(self.sequencer.enter_fullscreen())
        self.assertEqual(self.video.fullscreen_requests, 1)
        self.assertEqual(self.container.fullscreen_requests, 1)

    async def test_fullscreen_refusal_does_not_raise(self):
        self.container.fullscreen_error = RuntimeError("display refused")
        self.assertFalse(self.sequencer.enter_fullscreen())

    async def test_video_error_event_sets_status(self):
        self.sequencer.play_stimulus("/s/bad.mp4", "Broken")
        await asyncio.sleep(0)
        self.video.fire("error", "decoder failed")
        self.assertEqual(self.statuses[-1], VIDEO_ERROR_STATUS)

    async def test_play_failure_sets_status(self):
        self.video.play_error = "Could not open video: http://api.test/s/bad.mp4"
        self.sequencer.play_stimulus("/s/bad.mp4", "Broken")
        self.assertTrue(await wait_until(lambda: len(self.statuses) == 2))
        self.assertEqual(self.statuses[-1], "Error playing video: Could not open video: http://api.test/s/bad.mp4")

    async def test_loaded_metadata_is_logged(self):
        with self.assertLogs("services.playback_sequencer", level="INFO") as logs:
            self.sequencer.play_stimulus("/s/2.mp4", "Color Card")
            await asyncio.sleep(0)
        self.assertTrue(any("Video loaded successfully" in r.getMessage() for r in logs.records))


class TestStop(SequencerTestCase):

    async def test_stop_halts_audio_and_video(self):
        self.sequencer.play_stimulus("/s/2.mp4", "Color Card")
        audio = self.sequencer.play_voice("/v/1.mp3")
        await asyncio.sleep(0)
        self.sequencer.stop()
        self.assertTrue(audio.paused)
        self.assertIsNone(self.sequencer.audio)
        self.assertGreaterEqual(self.video.pauses, 1)
        self.assertIsNone(self.sequencer.current_stimulus)

    async def test_stop_cancels_delayed_voice(self):
        self.sequencer.play_stimulus("/s/2.mp4", "Color Card", voice_url="/v/2.mp3")
        self.sequencer.stop()
        await asyncio.sleep(0.1)
        self.assertIsNone(self.sequencer.audio)

    async def test_stop_cancels_pending_fullscreen(self):
        self.sequencer.play_stimulus("/s/2.mp4", "Color Card")
        await asyncio.sleep(0)
        self.video.fire("playing")
        self.sequencer.stop()
        await asyncio.sleep(0.1)
        self.assertEqual(self.video.fullscreen_requests, 0)

    async def test_events_after_session_end_are_ignored(self):
        audio = self.sequencer.play_voice("/v/1.mp3")
        await asyncio.sleep(0)
        self.active = False
        audio.finish()
        self.video.fire("error", "late")
        self.assertEqual(self.statuses, [])

    async def test_close_releases_container(self):
        self.sequencer.close()
        self.assertTrue(self.container.closed)


if __name__ == "__main__":
    unittest.main()
