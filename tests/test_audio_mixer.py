"""
Tests for audio graph construction.

Test cases:
1. Narration normalization with clarity gain
2. Exact-length silence when a segment has no narration
3. Global track placement (trim, delay, gain)
4. Final mix against the concatenated program (scenario B)
"""

from storyrender.render.audio_mixer import LOUDNORM_FILTER, AudioMixer, AudioTrackData


class TestSegmentAudio:
    """Per-segment audio chain."""

    def test_narration_chain(self):
        mixer = AudioMixer(sample_rate=44100, narration_gain=1.5)
        chain = mixer.build_segment_audio(2, has_narration=True, duration_s=5.5)

        assert chain == (
            "[2:a]aformat=sample_rates=44100:channel_layouts=stereo,volume=1.5,"
            "apad=whole_dur=5.500000[a_norm]"
        )

    def test_silence_inputs_match_duration(self):
        mixer = AudioMixer(sample_rate=48000)
        args = mixer.segment_audio_inputs(None, 3.25)

        assert args == [
            "-f", "lavfi",
            "-t", "3.250000",
            "-i", "anullsrc=channel_layout=stereo:sample_rate=48000",
        ]
        assert mixer.build_segment_audio(1, has_narration=False, duration_s=3.25) == (
            "[1:a]aformat=sample_rates=48000:channel_layouts=stereo[a_norm]"
        )

    def test_narration_input(self):
        assert AudioMixer().segment_audio_inputs("/a/n.mp3", 2.0) == ["-i", "/a/n.mp3"]


class TestGlobalMix:
    """Timeline-level mix of music/SFX tracks."""

    def test_scenario_b_track_delayed_and_attenuated(self, temp_output_dir):
        """Track at 2s with gain 0.5 starts 88200 samples in at 44.1 kHz."""
        mixer = AudioMixer(sample_rate=44100)
        track = AudioTrackData(file_path="/a/music.mp3", start_ms=2000, volume=0.5)

        spec = mixer.build_mix_spec(temp_output_dir / "merged.mp4", [track], temp_output_dir / "output.mp4")

        assert spec.stage == "mix"
        assert spec.filter_complex == (
            "[1:a]aformat=sample_rates=44100:channel_layouts=stereo,adelay=88200S:all=1,volume=0.5[track1];"
            f"[0:a][track1]amix=inputs=2:duration=first:dropout_transition=0:normalize=0,{LOUDNORM_FILTER}[aout]"
        )
        assert spec.args[:5] == ["-y", "-i", str(temp_output_dir / "merged.mp4"), "-i", "/a/music.mp3"]
        # Video is copied, never re-encoded
        assert spec.args[spec.args.index("-c:v") + 1] == "copy"
        assert ["-map", "0:v", "-map", "[aout]"] == spec.args[7:11]

    def test_track_trimmed_to_declared_duration(self):
        mixer = AudioMixer(sample_rate=44100)
        chain = mixer.build_track_filter(AudioTrackData(file_path="x.mp3", duration_ms=5000), 1, "track1")

        assert chain.startswith("[1:a]atrim=duration=5.0,asetpts=PTS-STARTPTS,aformat=")
        assert "adelay" not in chain

    def test_multiple_tracks_are_all_mixed(self, temp_output_dir):
        mixer = AudioMixer(sample_rate=44100)
        tracks = [
            AudioTrackData(file_path="music.mp3", volume=0.3),
            AudioTrackData(file_path="sfx.mp3", start_ms=1500),
        ]

        graph = mixer.build_mix_filter(tracks)

        assert "[2:a]aformat=sample_rates=44100:channel_layouts=stereo,adelay=66150S:all=1,volume=1.0[track2]" in graph
        assert "[0:a][track1][track2]amix=inputs=3:duration=first" in graph
