import pytest

from deep_memory.core.errors import ValidationError
from deep_memory.domain.specifications import ContentAdmissionSpecification, strip_html


@pytest.fixture
def admission():
    return ContentAdmissionSpecification(min_length=5)


@pytest.mark.parametrize(
    "content, reason",
    [
        (None, "not_text"),
        ("   ", "empty"),
        ("hi", "too_short"),
        ("<thinking>let me plan this out", "excluded_pattern"),
        ("System: you are a helpful bot", "excluded_pattern"),
        ("[Assistant] says hello there", "excluded_pattern"),
        ("?!?!...", "excluded_pattern"),
    ],
)
def test_rejected_content(admission, content, reason):
    assert not admission.is_satisfied_by(content)
    with pytest.raises(ValidationError) as exc_info:
        admission.check(content)
    assert exc_info.value.details.constraint.startswith(reason)


def test_admitted_content_is_trimmed(admission):
    assert admission.check("  We meet on Monday  ") == "We meet on Monday"


def test_role_prefix_only_counts_at_the_start(admission):
    assert admission.is_satisfied_by("The System: part is quoted")


def test_composition(admission):
    not_admitted = admission.not_()
    assert not_admitted.is_satisfied_by("hi")
    assert admission.and_(ContentAdmissionSpecification(min_length=20)).is_satisfied_by("short but fine") is False
    assert admission.or_(ContentAdmissionSpecification(min_length=1)).is_satisfied_by("ok")


def test_strip_html():
    assert strip_html("<p>Hello <b>there</b></p>\n<br/>friend") == "Hello there friend"
