"""
Unit tests for the course graph, its JSON source and the basket constraint.
"""

import json

import pytest

from builders import FULL_AUDIO, make_graph, make_lego, make_phrase
from helix.content.basket import basket_violations, check_audio, check_basket, check_playable
from helix.content.graph import AudioRef, LegoKind, PhraseRole, parse_lego_id
from helix.content.sources import JsonContentGraphSource, build_course_graph
from helix.core.errors import (
    BasketConstraintViolation,
    ContentIntegrityError,
    MissingAudioError,
    UnknownCourseError,
)


class TestLegoIds:
    """Textual ids and global order."""

    def test_id_format(self):
        assert make_lego(1, 1).id == "S0001L01"
        assert make_lego(42, 3).seed_id == "S0042"

    def test_parse(self):
        assert parse_lego_id("S0012L03") == (12, 3)

    def test_parse_malformed(self):
        with pytest.raises(ContentIntegrityError):
            parse_lego_id("lego-12")

    def test_global_order(self):
        legos = [make_lego(2, 1), make_lego(1, 2), make_lego(1, 1)]
        graph = make_graph(legos, [])
        assert [l.id for l in graph.legos] == ["S0001L01", "S0001L02", "S0002L01"]


class TestBasketConstraint:
    """Every referenced LEGO must come at or before the owner."""

    @pytest.fixture
    def graph(self):
        legos = [make_lego(n) for n in range(1, 8)]
        return make_graph(legos, [])

    def test_later_vocabulary_rejected(self, graph):
        """Phrase decomposing to LEGOs [2, 5, 7] attached to LEGO 5 is rejected."""
        phrase = make_phrase(
            "P1", "S0005L01", connected=["S0002L01", "S0005L01", "S0007L01"]
        )
        assert basket_violations(phrase, graph) == ["S0007L01"]
        with pytest.raises(BasketConstraintViolation) as exc:
            check_basket(phrase, graph)
        assert exc.value.offending_ids == ["S0007L01"]
        assert exc.value.lego_id == "S0005L01"

    def test_earlier_and_own_vocabulary_allowed(self, graph):
        phrase = make_phrase("P2", "S0005L01", connected=["S0001L01", "S0002L01", "S0005L01"])
        check_basket(phrase, graph)

    def test_same_seed_later_index_rejected(self):
        graph = make_graph([make_lego(3, 1), make_lego(3, 2)], [])
        phrase = make_phrase("P3", "S0003L01", connected=["S0003L01", "S0003L02"])
        with pytest.raises(BasketConstraintViolation):
            check_basket(phrase, graph)

    def test_malformed_reference_is_integrity_error(self, graph):
        phrase = make_phrase("P4", "S0005L01", connected=["S0005L01", "bogus"])
        with pytest.raises(ContentIntegrityError):
            check_playable(phrase, graph)


class TestAudio:
    """Prompt and both target voices are required unless voice 2 is skipped."""

    def test_complete_audio(self):
        check_audio(make_phrase("P1", "S0001L01"))

    def test_missing_voice2(self):
        audio = AudioRef(known="k", target_1="t1")
        phrase = make_phrase("P1", "S0001L01", audio=audio)
        with pytest.raises(MissingAudioError, match="target_2"):
            check_audio(phrase)
        check_audio(phrase, require_voice2=False)


class TestCourseDocuments:
    """JSON course documents and the directory source."""

    def test_demo_course_builds(self, demo_graph):
        assert len(demo_graph.seeds) == 12
        assert len(demo_graph.legos) == 24
        molecule = demo_graph.lego("S0001L02")
        assert molecule.kind == LegoKind.MOLECULAR
        assert [p.id for p in demo_graph.phrases_for("S0001L02", PhraseRole.COMPONENT)] == [
            "S0001L02-C1",
            "S0001L02-C2",
        ]

    def test_demo_course_is_basket_safe(self, demo_graph):
        for lego in demo_graph.legos:
            for phrase in demo_graph.phrases_for(lego.id):
                check_playable(phrase, demo_graph)

    def test_connected_defaults_to_owner(self):
        doc = {
            "course_code": "tiny",
            "seeds": [{
                "seed_number": 1, "known": "hi", "target": "hola",
                "legos": [{
                    "lego_index": 1, "known": "hi", "target": "hola",
                    "phrases": [{"id": "p", "role": "practice", "known": "hi", "target": "hola amigo"}],
                }],
            }],
        }
        graph = build_course_graph(doc)
        phrase = graph.phrases_for("S0001L01")[0]
        assert phrase.connected_lego_ids == ("S0001L01",)
        assert phrase.word_count == 2

    def test_duplicate_lego_index_rejected(self):
        doc = {
            "course_code": "bad",
            "seeds": [{
                "seed_number": 1, "known": "a", "target": "b",
                "legos": [
                    {"lego_index": 1, "known": "a", "target": "b"},
                    {"lego_index": 1, "known": "c", "target": "d"},
                ],
            }],
        }
        with pytest.raises(ContentIntegrityError):
            build_course_graph(doc)

    def test_json_source_loads_and_caches(self, tmp_path, demo_course):
        (tmp_path / "demo.json").write_text(json.dumps(demo_course))
        source = JsonContentGraphSource(tmp_path)

        graph = source.get_course_graph("demo")
        assert source.get_course_graph("demo") is graph
        assert source.available_courses() == ["demo"]

    def test_json_source_unknown_course(self, tmp_path):
        with pytest.raises(UnknownCourseError):
            JsonContentGraphSource(tmp_path).get_course_graph("nope")

    def test_json_source_course_code_mismatch(self, tmp_path, demo_course):
        (tmp_path / "other.json").write_text(json.dumps(demo_course))
        with pytest.raises(ContentIntegrityError):
            JsonContentGraphSource(tmp_path).get_course_graph("other")

    def test_lego_as_phrase_uses_lego_audio(self):
        lego = make_lego(1)
        phrase = lego.as_phrase()
        assert phrase.lego_id == lego.id
        assert phrase.audio == FULL_AUDIO
        assert phrase.connected_lego_ids == (lego.id,)
