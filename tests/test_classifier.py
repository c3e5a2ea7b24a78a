"""Tests for DeltaClassifier -- visible/reasoning split across fragment boundaries."""

import pytest

from parley.stream.classifier import Channel, DeltaClassifier, Emission, Region


def _run(fragments: list[str], classifier: DeltaClassifier | None = None) -> tuple[str, str]:
    """Feed fragments, finish, and return (visible, reasoning)."""
    c = classifier or DeltaClassifier()
    emissions: list[Emission] = []
    for fragment in fragments:
        emissions.extend(c.feed(fragment))
    emissions.extend(c.finish())
    visible = "".join(e.text for e in emissions if e.channel == Channel.VISIBLE)
    reasoning = "".join(e.text for e in emissions if e.channel == Channel.REASONING)
    return visible, reasoning


class TestSingleFragment:
    def test_plain_text_is_visible(self):
        assert _run(["hello world"]) == ("hello world", "")

    def test_reasoning_then_answer(self):
        assert _run(["<think>plan</think>answer"]) == ("answer", "plan")

    def test_text_before_and_after(self):
        assert _run(["A<think>B</think>C"]) == ("AC", "B")

    def test_case_insensitive_markers(self):
        assert _run(["<THINK>x</Think>y"]) == ("y", "x")

    def test_unclosed_region_stays_reasoning(self):
        assert _run(["<think>still going"]) == ("", "still going")

    def test_close_marker_without_open_is_visible(self):
        assert _run(["a</think>b"]) == ("a</think>b", "")

    def test_multiple_regions(self):
        assert _run(["<think>1</think>a<think>2</think>b"]) == ("ab", "12")


class TestSplitMarkers:
    def test_markers_split_across_fragments(self):
        assert _run(["A<thi", "nk>B</th", "ink>C"]) == ("AC", "B")

    def test_one_character_per_fragment(self):
        source = "pre<think>deep thought</think>post"
        assert _run(list(source)) == ("prepost", "deep thought")

    @pytest.mark.parametrize("split", range(1, len("x<think>r</think>y")))
    def test_every_two_way_split(self, split):
        source = "x<think>r</think>y"
        assert _run([source[:split], source[split:]]) == ("xy", "r")

    def test_false_partial_prefix_is_released(self):
        # "<th" looked like a marker start but the next fragment says otherwise
        assert _run(["a<th", "ere"]) == ("a<there", "")

    def test_partial_prefix_released_at_finish(self):
        assert _run(["answer <thi"]) == ("answer <thi", "")

    def test_partial_close_released_into_reasoning_at_finish(self):
        assert _run(["<think>hmm </th"]) == ("", "hmm </th")


class TestState:
    def test_held_suffix_is_shorter_than_marker(self):
        c = DeltaClassifier()
        c.feed("text<think")
        assert c.state.pending == "<think"
        assert len(c.state.pending) < len("<think>")

    def test_region_tracks_markers(self):
        c = DeltaClassifier()
        c.feed("<think>")
        assert c.state.region == Region.INSIDE
        c.feed("</think>")
        assert c.state.region == Region.OUTSIDE

    def test_empty_fragment_emits_nothing(self):
        c = DeltaClassifier()
        assert c.feed("") == []
        assert c.finish() == []

    def test_empty_fragment_leaves_state_unchanged(self):
        c = DeltaClassifier()
        c.feed("<think>abc</th")
        before = (c.state.region, c.state.pending)
        assert c.feed("") == []
        assert (c.state.region, c.state.pending) == before

    def test_no_empty_emissions(self):
        c = DeltaClassifier()
        emissions = c.feed("<think></think>")
        assert emissions == []

    def test_reset(self):
        c = DeltaClassifier()
        c.feed("<think>abc</th")
        c.reset()
        assert c.state.region == Region.OUTSIDE
        assert c.state.pending == ""

    def test_custom_markers(self):
        c = DeltaClassifier("[[r]]", "[[/r]]")
        assert _run(["a[[r", "]]b[[/r]]c"], c) == ("ac", "b")

    def test_empty_marker_rejected(self):
        with pytest.raises(ValueError):
            DeltaClassifier("", "</think>")
