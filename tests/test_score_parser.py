# tests/test_score_parser.py
from __future__ import annotations

import pytest

from functions.scoring.score_parser import parse_score


@pytest.mark.parametrize(
    "reply, expected",
    [
        ("**ATS Score:** 82/100\n\n**Feedback:**\n* Add metrics", 82),
        ("ATS Score: 55", 55),
        ("ats score : 64 / 100", 64),
        ("SCORE: 71/100", 71),
        ("Score: 150", 150),
        ("__ATS Score:__ 40/100", 40),
    ],
)
def test_parse_score_reads_labelled_scores(reply: str, expected: int) -> None:
    assert parse_score(reply) == expected


@pytest.mark.parametrize("reply", [None, "", "   \n"])
def test_parse_score_defaults_to_zero_for_missing_reply(reply) -> None:
    assert parse_score(reply) == 0


def test_parse_score_defaults_to_zero_when_no_digits() -> None:
    assert parse_score("no score here, sorry") == 0


def test_parse_score_takes_first_number_even_before_a_label() -> None:
    reply = "Reviewed 3 sections.\n\n**ATS Score:** 77/100"
    assert parse_score(reply) == 3


def test_parse_score_reads_unlabelled_number() -> None:
    assert parse_score("I would rate this 68/100 overall, maybe 70.") == 68
