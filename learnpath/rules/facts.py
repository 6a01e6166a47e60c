from __future__ import annotations

from collections.abc import Mapping
from typing import Any

EXPERIENCE_MAP: dict[str, tuple[str, float]] = {
    "0": ("absolute_beginner", 0.0),
    "1": ("beginner", 0.5),
    "2": ("beginner", 1.5),
    "3": ("intermediate", 2.5),
    "4": ("intermediate", 3.5),
    "5+": ("advanced", 6.0),
}

FOCUS_TO_CAREER_PATH = {
    "frontend": "frontend_specialist",
    "backend": "backend_specialist",
    "fullstack": "fullstack_developer",
    "mobile": "mobile_specialist",
    "unsure": "generalist",
}

PRIMARY_GOAL_MAP = {
    "web_development": "learn_web_development",
    "data_science": "learn_data_science",
    "mobile_development": "learn_mobile_development",
    "machine_learning": "learn_machine_learning",
}

GOAL_TO_URGENCY = {
    "job_switch": "high",
    "skill_upgrade": "low",
    "freelance": "medium",
    "side_business": "medium",
    "personal_projects": "low",
}

LEARNING_STYLE_MAP: dict[str, tuple[str, str]] = {
    "video_courses": ("visual", "video"),
    "hands_on": ("kinesthetic", "interactive"),
    "structured_course": ("structured", "course"),
    "documentation": ("reading", "text"),
    "community": ("social", "forum"),
}

FLAG_WARNINGS = {
    "inconsistent_profile": "Your profile shows some inconsistencies. Please review your time commitment for your career goals.",
    "unrealistic_timeline": "Your timeline expectations may be challenging given your available study time.",
    "education_experience_mismatch": "Consider how your educational background can accelerate your learning.",
}


def _commitment_level(hours: int) -> str:
    if hours <= 5:
        return "casual"
    if hours <= 15:
        return "consistent"
    if hours <= 25:
        return "serious"
    return "intensive"


def _as_hours(raw: Any) -> int:
    if isinstance(raw, bool):
        return 0
    try:
        return int(float(str(raw).strip()))
    except (TypeError, ValueError):
        return 0


def _unique(items: list[str]) -> list[str]:
    out: list[str] = []
    for i in items:
        if i not in out:
            out.append(i)
    return out


def normalize_answers(answers: Mapping[str, Any]) -> dict[str, Any]:
    """Map raw questionnaire answers onto the normalized fact keys rules are written against."""
    facts: dict[str, Any] = {}
    facts["educationLevel"] = answers.get("education_level") or "unknown"

    level, years = EXPERIENCE_MAP.get(str(answers.get("coding_experience", "")), ("unknown", 0.0))
    facts["experienceLevel"] = level
    facts["experienceYears"] = years

    hours = _as_hours(answers.get("weekly_hours"))
    facts["studyHours"] = hours
    facts["commitmentLevel"] = _commitment_level(hours)

    focus = answers.get("web_dev_focus")
    facts["focusArea"] = focus
    facts["careerPath"] = FOCUS_TO_CAREER_PATH.get(str(focus), "generalist")

    goal = answers.get("career_goal")
    facts["careerGoal"] = goal
    if goal == "career_change":
        facts["primaryGoal"] = "career_change"
    primary = answers.get("primary_goal")
    if primary:
        facts["primaryGoal"] = PRIMARY_GOAL_MAP.get(str(primary), primary)
    facts["urgency"] = GOAL_TO_URGENCY.get(str(goal), "medium")

    styles = answers.get("learning_style")
    if styles is None:
        styles = []
    elif not isinstance(styles, (list, tuple)):
        styles = [styles]
    prefs: list[str] = []
    resource_types: list[str] = []
    for style in styles:
        mapped = LEARNING_STYLE_MAP.get(str(style))
        if mapped:
            prefs.append(mapped[0])
            resource_types.append(mapped[1])
    facts["learningPreferences"] = _unique(prefs)
    facts["resourceTypes"] = _unique(resource_types)

    if answers.get("interests"):
        facts["interests"] = answers["interests"]

    facts["flags"] = detect_inconsistencies(facts)
    return facts


def detect_inconsistencies(facts: Mapping[str, Any]) -> list[str]:
    flags: list[str] = []
    if (
        facts.get("experienceLevel") == "advanced"
        and facts.get("commitmentLevel") == "casual"
        and facts.get("urgency") == "high"
    ):
        flags.append("inconsistent_profile")
    if facts.get("urgency") == "high" and facts.get("commitmentLevel") == "casual":
        flags.append("unrealistic_timeline")
    if facts.get("educationLevel") == "phd" and facts.get("experienceLevel") == "absolute_beginner":
        flags.append("education_experience_mismatch")
    return flags


def flag_warnings(facts: Mapping[str, Any]) -> list[str]:
    flags = facts.get("flags")
    if not isinstance(flags, (list, tuple)):
        return []
    return [FLAG_WARNINGS[f] for f in flags if isinstance(f, str) and f in FLAG_WARNINGS]
