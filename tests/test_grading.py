import pytest

from schemas.grading import GradingBandIn, GradingScope
from services.errors import ConfigurationError, NoScaleConfigured, ScoreOutOfRange
from services.grading import DEFAULT_BANDS, GradingScaleResolver, grade_resolver, validate_bands


def _band(lo, hi, grade, remark="ok"):
    return GradingBandIn(from_percentage=lo, to_percentage=hi, grade=grade, remark=remark)


def test_science_scale_scenario(db, school, scope):
    assert grade_resolver.resolve_grade(db, 92, scope).grade == "A"
    assert grade_resolver.resolve_grade(db, 74, scope).grade == "F"
    assert grade_resolver.resolve_grade(db, 74, scope).remark == "Fail"


def test_band_edges_are_inclusive(db, school, scope):
    assert grade_resolver.resolve_grade(db, 90, scope).grade == "A"
    assert grade_resolver.resolve_grade(db, 89, scope).grade == "B"
    assert grade_resolver.resolve_grade(db, 75, scope).grade == "B"
    assert grade_resolver.resolve_grade(db, 100, scope).grade == "A"
    assert grade_resolver.resolve_grade(db, 0, scope).grade == "F"


def test_fractional_score_in_seam_belongs_to_lower_band(db, school, scope):
    assert grade_resolver.resolve_grade(db, 89.5, scope).grade == "B"
    assert grade_resolver.resolve_grade(db, 74.99, scope).grade == "F"


def test_every_score_in_domain_resolves_to_exactly_one_grade(db, school, scope):
    grades = {grade_resolver.resolve_grade(db, tenth / 10, scope).grade for tenth in range(0, 1001)}
    assert grades == {"A", "B", "F"}


def test_score_above_scale_is_rejected_by_default(db, school, scope):
    with pytest.raises(ScoreOutOfRange):
        grade_resolver.resolve_grade(db, 101, scope)


def test_clamp_policy_uses_nearest_band(db, school, scope):
    resolution = grade_resolver.resolve_grade(db, 101, scope, policy="clamp")
    assert resolution.grade == "A"
    assert resolution.clamped is True
    assert GradingScaleResolver(policy="clamp").resolve_grade(db, -3, scope).grade == "F"


def test_real_gap_is_out_of_range(db, school):
    gappy = GradingScope(department="Arts", academic_year="2024/2025", term="first")
    grade_resolver.save_scale(db, gappy, [_band(90, 100, "A"), _band(0, 70, "F")])
    with pytest.raises(ScoreOutOfRange):
        grade_resolver.resolve_grade(db, 80, gappy)
    # equidistant from both edges: lower band
    assert grade_resolver.resolve_grade(db, 80, gappy, policy="clamp").grade == "F"
    assert grade_resolver.resolve_grade(db, 85, gappy, policy="clamp").grade == "A"


def test_missing_scale_raises_no_scale_configured(db, school):
    other = GradingScope(department="Science", academic_year="2024/2025", term="second")
    with pytest.raises(NoScaleConfigured) as exc:
        grade_resolver.resolve_grade(db, 50, other)
    assert isinstance(exc.value, ConfigurationError)


def test_saving_a_scale_invalidates_cached_table(db, school, scope):
    assert grade_resolver.resolve_grade(db, 80, scope).grade == "B"
    grade_resolver.save_scale(db, scope, [_band(80, 100, "A"), _band(0, 79, "F")])
    assert grade_resolver.resolve_grade(db, 80, scope).grade == "A"


def test_overlapping_scale_is_rejected_at_save(db, school, scope):
    with pytest.raises(ConfigurationError) as exc:
        grade_resolver.save_scale(db, scope, [_band(70, 100, "A"), _band(0, 70, "F")])
    assert any("Overlapping" in p for p in exc.value.context["problems"])
    # original scale untouched
    assert grade_resolver.resolve_grade(db, 92, scope).grade == "A"


def test_validate_bands_reports_every_problem():
    problems = validate_bands([
        _band(50, 40, "C"),
        GradingBandIn(from_percentage=0, to_percentage=120, grade="", remark=""),
    ])
    assert any("greater than" in p for p in problems)
    assert any("grade is required" in p for p in problems)
    assert any("remark is required" in p for p in problems)
    assert any("between 0 and 100" in p for p in problems)


def test_default_scale_is_valid_and_seeded_once(db, school):
    assert validate_bands(DEFAULT_BANDS) == []
    jhs = GradingScope(department="JHS", academic_year="2024/2025", term="first")
    assert grade_resolver.ensure_default_scale(db, jhs) is True
    assert grade_resolver.ensure_default_scale(db, jhs) is False
    assert grade_resolver.resolve_grade(db, 79.5, jhs).grade == "B2"
    assert grade_resolver.resolve_grade(db, 39, jhs).grade == "F9"
