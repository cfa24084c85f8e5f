"""
Synthetic demo course.

Generates a deterministic, basket-safe course document so the scheduler can be
exercised end to end without a content pipeline export (CLI simulation and
tests). Texts are placeholders; audio references follow the CDN key layout.
"""
from __future__ import annotations

from helix.content.graph import lego_id_for

_POSITIONS = ("start", "middle", "end")


def _audio(key: str) -> dict:
    return {
        "known": f"audio/{key}/known.mp3",
        "target_1": f"audio/{key}/target_1.mp3",
        "target_2": f"audio/{key}/target_2.mp3",
        "target_duration_ms": 900,
    }


def _earlier_ids(seed_number: int, count: int) -> list[str]:
    """Up to `count` LEGO ids from earlier seeds, newest first."""
    ids = []
    for n in range(seed_number - 1, 0, -1):
        ids.append(lego_id_for(n, 1))
        if len(ids) == count:
            break
    return ids


def build_demo_course(course_code: str = "demo", seed_count: int = 12) -> dict:
    """
    Build a course document with `seed_count` seeds.

    Each seed has an Atomic LEGO (L01, introduced by itself) and a Molecular
    LEGO (L02, introduced through two component phrases). Practice and eternal
    phrases only reference the owner and earlier LEGOs.
    """
    seeds = []
    for n in range(1, seed_count + 1):
        atom_id = lego_id_for(n, 1)
        molecule_id = lego_id_for(n, 2)

        atom_phrases = []
        for i in range(2):
            words = 2 + i
            atom_phrases.append({
                "id": f"{atom_id}-P{i + 1}",
                "role": "practice",
                "known": f"practice {n}.{i + 1}",
                "target": " ".join([f"palabra{n}"] * words),
                "word_count": words,
                "syllable_count": words * 2,
                "connected_lego_ids": [atom_id],
                "lego_position": _POSITIONS[i % 3],
                "audio": _audio(f"{atom_id}-P{i + 1}"),
            })
        for i in range(3):
            connected = [atom_id] + _earlier_ids(n, i)
            atom_phrases.append({
                "id": f"{atom_id}-E{i + 1}",
                "role": "eternal_eligible",
                "known": f"eternal {n}.{i + 1}",
                "target": " ".join(f"w{c}" for c in connected) + " fin",
                "connected_lego_ids": connected,
                "lego_position": _POSITIONS[i % 3],
                "audio": _audio(f"{atom_id}-E{i + 1}"),
            })

        molecule_phrases = [
            {
                "id": f"{molecule_id}-C{i + 1}",
                "role": "component",
                "known": f"part {i + 1} of {n}",
                "target": f"parte{i + 1}",
                "connected_lego_ids": [molecule_id],
                "audio": _audio(f"{molecule_id}-C{i + 1}"),
            }
            for i in range(2)
        ]
        # Authored longest first; the selector orders the build-up
        for i in (2, 1, 0):
            words = 3 + i
            molecule_phrases.append({
                "id": f"{molecule_id}-P{i + 1}",
                "role": "practice",
                "known": f"build {n}.{i + 1}",
                "target": " ".join(["frase"] * words),
                "word_count": words,
                "connected_lego_ids": [molecule_id, atom_id],
                "lego_position": _POSITIONS[i % 3],
                "audio": _audio(f"{molecule_id}-P{i + 1}"),
            })
        for i in range(4):
            connected = [molecule_id, atom_id] + _earlier_ids(n, i)
            molecule_phrases.append({
                "id": f"{molecule_id}-E{i + 1}",
                "role": "eternal_eligible",
                "known": f"eternal molecule {n}.{i + 1}",
                "target": " ".join(f"w{c}" for c in connected),
                "connected_lego_ids": connected,
                "lego_position": _POSITIONS[i % 3],
                "audio": _audio(f"{molecule_id}-E{i + 1}"),
            })

        seeds.append({
            "seed_number": n,
            "known": f"sentence {n}",
            "target": f"frase completa {n}",
            "legos": [
                {
                    "lego_index": 1,
                    "kind": "A",
                    "known": f"word {n}",
                    "target": f"palabra{n}",
                    "audio": _audio(atom_id),
                    "phrases": atom_phrases,
                },
                {
                    "lego_index": 2,
                    "kind": "M",
                    "known": f"chunk {n}",
                    "target": f"parte1 parte2 {n}",
                    "components": ["parte1", "parte2"],
                    "audio": _audio(molecule_id),
                    "phrases": molecule_phrases,
                },
            ],
        })

    return {
        "course_code": course_code,
        "known_language": "eng",
        "target_language": "spa",
        "seeds": seeds,
    }
