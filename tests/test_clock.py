from dailyemoji.clock import ms_to_iso


def test_ms_to_iso():
    assert ms_to_iso(None) is None
    assert ms_to_iso(0) == '1970-01-01T00:00:00+00:00'
    assert ms_to_iso(1_767_225_600_000) == '2026-01-01T00:00:00+00:00'
