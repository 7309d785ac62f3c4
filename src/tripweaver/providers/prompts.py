"""System and user prompts for each provider role."""

import json
from typing import Any

CREATIVE_SYSTEM_PROMPT = """\
You are a local travel expert who plans itineraries the way a resident would.
Favor independent, neighborhood places over tourist landmarks and chains.
Every activity must be a real, named place in the requested city.

Return a JSON object with this structure:
{
  "title": string,
  "subtitle": string,
  "city": string,
  "local_score": number (1-10),
  "estimated_cost": string,
  "highlights": [string],
  "days": [
    {
      "day": number (1-based),
      "title": string,
      "activities": [
        {
          "time": "HH:MM",
          "name": string,
          "description": string,
          "category": string,
          "address": string,
          "cost": string
        }
      ]
    }
  ]
}
"""

VALIDATOR_SYSTEM_PROMPT = """\
You are a location verification specialist. Check that the requested city
exists, that the trip length and interests make sense for it, and list
well-known neighborhoods and places that can be verified.

Return a JSON object with this structure:
{
  "city_verified": boolean,
  "verified_locations": [{"name": string, "address": string, "confidence": number}],
  "issues": [
    {
      "type": "location" | "time" | "budget" | "structure" | "quality",
      "severity": "error" | "warning" | "info",
      "message": string
    }
  ]
}
"""

SUPERVISOR_SYSTEM_PROMPT = """\
You are the senior reviewer of a multi-model itinerary system. You receive a
generated itinerary, the original request and, when available, a preliminary
location validation report.

Verify location accuracy, timing and geographic grouping, budget realism and
the absence of generic placeholder names. Set "approved" to true only when the
quality score is 60 or higher and there are no error-severity issues.

Return a JSON object with this structure:
{
  "approved": boolean,
  "quality_score": number (0-100),
  "issues": [
    {
      "type": "location" | "time" | "budget" | "structure" | "quality",
      "severity": "error" | "warning" | "info",
      "day_index": number,
      "activity_index": number,
      "message": string
    }
  ],
  "suggestions": [
    {"day_index": number, "activity_index": number, "action": "replace" | "modify" | "remove", "reason": string}
  ],
  "revised_itinerary": object | null
}
"""

SUPERVISION_INSTRUCTIONS = {
    "basic": "Review only: do not return a revised itinerary.",
    "full": (
        "Fix every error you find and return the corrected itinerary in "
        "revised_itinerary, keeping all fields of the original structure."
    ),
}


def creative_user_prompt(params: dict[str, Any]) -> str:
    """Build the itinerary request sent to the creative generator."""
    lines = [f"Plan a {params['days']}-day trip to {params['city']}."]
    if params.get("interests"):
        lines.append(f"Interests: {', '.join(params['interests'])}.")
    if params.get("budget"):
        lines.append(f"Budget: {params['budget']}.")
    if params.get("pace"):
        lines.append(f"Pace: {params['pace']}.")
    if params.get("group_type"):
        lines.append(f"Traveling as: {params['group_type']}.")
    if params.get("localness_level"):
        lines.append(f"Localness (1 = mainstream, 5 = only locals): {params['localness_level']}.")
    if params.get("template_prompt"):
        lines.append(f"Additional guidance: {params['template_prompt']}")
    return "\n".join(lines)


def validator_user_prompt(params: dict[str, Any]) -> str:
    """Build the location check sent to the validator."""
    return (
        "Validate this trip request and list verifiable places:\n"
        f"{json.dumps(params, ensure_ascii=False)}"
    )


def supervisor_user_prompt(
    params: dict[str, Any],
    itinerary: dict[str, Any],
    preliminary_report: dict[str, Any] | None,
    supervision_level: str,
) -> str:
    """Build the review request sent to the supervisor."""
    sections = [
        f"Request:\n{json.dumps(params, ensure_ascii=False)}",
        f"Itinerary:\n{json.dumps(itinerary, ensure_ascii=False)}",
    ]
    if preliminary_report:
        sections.append(
            f"Preliminary validation:\n{json.dumps(preliminary_report, ensure_ascii=False)}"
        )
    sections.append(SUPERVISION_INSTRUCTIONS.get(supervision_level, SUPERVISION_INSTRUCTIONS["basic"]))
    return "\n\n".join(sections)
