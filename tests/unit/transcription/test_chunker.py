"""Tests for silence-aware chunking."""

import pytest

from vpp.transcription.chunker import SilenceInterval, SplitReason, chunk


def _silence_at(midpoint: float, half_width: float = 1.0) -> SilenceInterval:
    return SilenceInterval(midpoint - half_width, midpoint + half_width)


def _assert_tiles(chunks, total, maximum):
    assert chunks[0].start == 0.0
    assert chunks[-1].end == total
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start == previous.end
    assert all(c.duration <= maximum for c in chunks)
    assert [c.index for c in chunks] == list(range(len(chunks)))


class TestChunk:
    """Tests for chunk()."""

    def test_empty_input(self):
        assert chunk(0.0, [], 600, 900) == []

    def test_short_input_is_single_chunk(self):
        chunks = chunk(500.0, [_silence_at(250)], 600, 900)

        assert len(chunks) == 1
        assert chunks[0].end == 500.0
        assert chunks[0].split_reason is SplitReason.END_OF_INPUT

    def test_cuts_at_silence_nearest_target(self):
        silences = [_silence_at(590), _silence_at(1190)]
        chunks = chunk(1500.0, silences, 600, 900)

        assert [(c.start, c.end) for c in chunks] == [
            (0.0, 590.0),
            (590.0, 1190.0),
            (1190.0, 1500.0),
        ]
        assert [c.split_reason for c in chunks] == [
            SplitReason.SILENCE_FOUND,
            SplitReason.SILENCE_FOUND,
            SplitReason.END_OF_INPUT,
        ]
        _assert_tiles(chunks, 1500.0, 900)

    def test_forced_cut_without_silence(self):
        chunks = chunk(2000.0, [], 600, 900)

        assert [(c.start, c.end) for c in chunks] == [
            (0.0, 900.0),
            (900.0, 1800.0),
            (1800.0, 2000.0),
        ]
        assert chunks[0].split_reason is SplitReason.FORCED_MAX_DURATION
        _assert_tiles(chunks, 2000.0, 900)

    def test_silence_beyond_max_is_ignored(self):
        chunks = chunk(2000.0, [_silence_at(950)], 600, 900)

        assert chunks[0].end == 900.0
        assert chunks[0].split_reason is SplitReason.FORCED_MAX_DURATION

    def test_tie_goes_to_earliest_silence(self):
        chunks = chunk(1500.0, [_silence_at(610), _silence_at(590)], 600, 900)
        assert chunks[0].end == 590.0

    def test_short_silences_ignored(self):
        silences = [SilenceInterval(599.9, 600.1)]
        chunks = chunk(2000.0, silences, 600, 900, min_silence=0.5)

        assert chunks[0].end == 900.0
        assert chunks[0].split_reason is SplitReason.FORCED_MAX_DURATION

    def test_remaining_within_max_becomes_final_chunk(self):
        """A forced cut at or past the end of input is not a cut at all."""
        chunks = chunk(800.0, [], 600, 900)

        assert len(chunks) == 1
        assert chunks[0].split_reason is SplitReason.END_OF_INPUT

    def test_silences_in_any_order(self):
        silences = [_silence_at(1190), _silence_at(590)]
        assert chunk(1500.0, silences, 600, 900) == chunk(
            1500.0, list(reversed(silences)), 600, 900
        )

    @pytest.mark.parametrize("target,maximum", [(0, 900), (-1, 900), (600, 500)])
    def test_invalid_durations(self, target, maximum):
        with pytest.raises(ValueError):
            chunk(1000.0, [], target, maximum)

    def test_long_input_tiles(self):
        silences = [_silence_at(t) for t in range(300, 10_000, 700)]
        chunks = chunk(10_000.0, silences, 600, 900)
        _assert_tiles(chunks, 10_000.0, 900)


class TestSplitReason:
    def test_reason_values(self):
        assert [r.value for r in SplitReason] == [
            "silence-found",
            "forced-max-duration",
            "end-of-input",
        ]
