from __future__ import annotations

from app.schemas.layer import Message
from app.services.tickets import build_subject, message_text


def test_short_text_is_used_unchanged():
    assert build_subject("Hello there, I need help") == "Hello there, I need help"


def test_text_of_exactly_sixty_characters_is_kept():
    text = "x" * 60
    assert build_subject(text) == text


def test_long_text_is_cut_at_first_sentence_boundary():
    first_sentence = "a" * 40 + "."
    text = first_sentence + " " + "b" * 38
    assert len(text) == 80

    subject = build_subject(text)

    assert subject == first_sentence
    assert len(subject) == 41


def test_long_text_without_boundary_is_hard_truncated():
    text = "c" * 80

    subject = build_subject(text)

    assert len(subject) == 60
    assert subject == "c" * 57 + "..."


def test_long_first_sentence_is_truncated_after_cut():
    text = "d" * 70 + "? " + "e" * 20

    subject = build_subject(text)

    assert subject == "d" * 57 + "..."


def test_semicolon_and_question_mark_are_boundaries():
    assert build_subject("Where is my order? " + "f" * 60) == "Where is my order?"
    assert build_subject("First clause; " + "g" * 60) == "First clause;"


def test_punctuation_without_whitespace_is_not_a_boundary():
    text = "version 1.2.3 " + "h" * 60

    subject = build_subject(text)

    assert subject == text[:57] + "..."


def test_message_text_joins_plain_text_parts_only():
    message = Message.model_validate(
        {
            "conversation": {"id": "C1"},
            "sender": {"user_id": "U1"},
            "parts": [
                {"mime_type": "text/plain", "body": "first"},
                {"mime_type": "image/png", "body": "binary"},
                {"mime_type": "text/plain", "body": "second"},
            ],
        }
    )

    assert message_text(message) == "first\nsecond"
