"""Quality scoring and report construction from provider payloads."""

from typing import Any

from tripweaver.models import ProviderRole, ValidationIssue, ValidationReport

SEVERITY_PENALTIES = {"error": 25, "warning": 10, "info": 2}


def clamp_score(value: float) -> int:
    return max(0, min(100, int(round(value))))


def quality_score(report: ValidationReport | None) -> int | None:
    """
    Score a report on a 0-100 scale.

    An explicit score from the provider wins; otherwise each issue
    costs points by severity. Returns None when there is no report.
    """
    if report is None:
        return None
    if report.quality_score is not None:
        return clamp_score(report.quality_score)
    penalty = sum(SEVERITY_PENALTIES.get(issue.severity, 0) for issue in report.issues)
    return max(0, 100 - penalty)


def _issues(payload: dict[str, Any]) -> list[ValidationIssue]:
    return [
        ValidationIssue.from_dict(raw)
        for raw in payload.get("issues") or []
        if isinstance(raw, dict)
    ]


def report_from_validator(payload: dict[str, Any]) -> ValidationReport:
    """Preliminary report from the Phase 1 validator."""
    issues = _issues(payload)
    if payload.get("city_verified") is False:
        issues.insert(
            0,
            ValidationIssue(type="location", severity="error", message="City could not be verified"),
        )
    report = ValidationReport(source=ProviderRole.VALIDATOR, issues=issues)
    report.quality_score = quality_score(report)
    return report


def report_from_supervisor(payload: dict[str, Any], revision_cycles: int = 0) -> ValidationReport:
    """Final report from the Phase 2 supervisor."""
    raw_score = payload.get("quality_score")
    report = ValidationReport(
        source=ProviderRole.SUPERVISOR,
        issues=_issues(payload),
        quality_score=clamp_score(raw_score) if isinstance(raw_score, (int, float)) else None,
        approved=bool(payload.get("approved", False)),
        suggestions=[s for s in payload.get("suggestions") or [] if isinstance(s, dict)],
        revision_cycles=revision_cycles,
    )
    report.quality_score = quality_score(report)
    return report
