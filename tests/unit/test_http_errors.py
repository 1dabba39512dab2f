import pytest

from teleport_uploader.utils.http_errors import extract_error_detail, truncate_url


@pytest.mark.parametrize(
    "body, expected",
    [
        ('{"detail": "Capture name taken"}', "Capture name taken"),
        ('{"detail": {"error": "quota exceeded"}}', "quota exceeded"),
        ('{"message": "bad request"}', "bad request"),
        ('["unexpected"]', "['unexpected']"),
        ("Internal Server Error", "Internal Server Error"),
    ],
)
def test_extract_error_detail(body, expected):
    assert extract_error_detail(body) == expected


def test_truncate_url():
    assert truncate_url("https://short") == "https://short"
    assert truncate_url("x" * 100, limit=10) == "x" * 10 + "..."
