from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

EXTRACTION_SYSTEM = "You extract health-logging actions from short voice transcripts."
MACROS_SYSTEM = "You are a nutrition expert that provides accurate macro estimates for foods."
SUGGESTIONS_SYSTEM = "You are a nutrition expert specializing in pregnancy nutrition."
IMAGE_SYSTEM = "You are a nutrition expert that estimates the contents of meal photos."

ACTION_TYPES = ["log_water", "log_food", "log_symptom", "log_vitamin", "log_puqe_score", "add_new_vitamin", "unknown"]

EXTRACTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "actions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": ACTION_TYPES},
                    "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                    "details": {
                        "type": "object",
                        "properties": {
                            "item": {"type": "string"},
                            "amount": {"type": "string"},
                            "unit": {"type": "string"},
                            "calories": {"type": "string"},
                            "severity": {"type": "string"},
                            "mealType": {"type": "string"},
                            "symptoms": {"type": "array", "items": {"type": "string"}},
                            "vitaminName": {"type": "string"},
                            "notes": {"type": "string"},
                            "timestamp": {"type": "string"},
                            "frequency": {"type": "string"},
                            "dosage": {"type": "string"},
                            "timesPerDay": {"type": "integer"},
                        },
                        "required": [],
                        "additionalProperties": False,
                    },
                },
                "required": ["type", "confidence", "details"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["actions"],
    "additionalProperties": False,
}

MACROS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "calories": {"type": "integer", "description": "Total calories for the specified portion"},
        "protein": {"type": "integer", "description": "Protein in grams"},
        "carbs": {"type": "integer", "description": "Carbohydrates in grams"},
        "fat": {"type": "integer", "description": "Fat in grams"},
    },
    "required": ["calories", "protein", "carbs", "fat"],
    "additionalProperties": False,
}

SUGGESTIONS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "suggestions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "food": {"type": "string"},
                    "reason": {"type": "string"},
                    "nutritionalBenefit": {"type": "string"},
                    "preparationTip": {"type": "string"},
                    "avoidIfHigh": {"type": "boolean"},
                },
                "required": ["food", "reason", "nutritionalBenefit", "preparationTip", "avoidIfHigh"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["suggestions"],
    "additionalProperties": False,
}

_NUMBER = {"type": "number"}
IMAGE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "items": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "quantity": {"type": "string"},
                    "estimatedCalories": {"type": "integer"},
                    "protein": _NUMBER,
                    "carbs": _NUMBER,
                    "fat": _NUMBER,
                    "fiber": _NUMBER,
                },
                "required": ["name", "quantity", "estimatedCalories", "protein", "carbs", "fat", "fiber"],
                "additionalProperties": False,
            },
        },
        "totalCalories": {"type": "integer"},
        "totalProtein": _NUMBER,
        "totalCarbs": _NUMBER,
        "totalFat": _NUMBER,
        "totalFiber": _NUMBER,
    },
    "required": ["items", "totalCalories", "totalProtein", "totalCarbs", "totalFat", "totalFiber"],
    "additionalProperties": False,
}


def _at_hour(now: datetime, hour: int) -> str:
    return now.replace(hour=hour, minute=0, second=0, microsecond=0).isoformat()


def extraction_prompt(transcript: str, now: datetime) -> str:
    current = now.isoformat()
    breakfast = _at_hour(now, 8)
    supper = _at_hour(now, 18)
    two_hours_ago = (now - timedelta(hours=2)).isoformat()
    return f"""Analyze this voice transcript and extract every action the user wants to perform.
Current timestamp: {current}
Current hour: {now.hour:02d}:00

Return {{"actions": [...]}} where each action has type, details and confidence (0-1).
Types: {", ".join(ACTION_TYPES)}

TIME PARSING RULES:
1. Every action MUST carry a "timestamp" in ISO 8601 format.
2. Meal times: breakfast / this morning -> today 08:00; lunch / midday -> today 12:00;
   dinner / supper / this evening -> today 18:00; snack -> current time.
3. Relative times: "just now" or nothing said -> current timestamp; "X hours ago" / "X minutes ago"
   -> subtract from current time; "earlier" -> 2 hours ago; "this afternoon" -> today 14:00;
   "last night" -> yesterday 20:00; "yesterday" + meal -> yesterday at that meal time.
4. Specific times: "at 2pm" -> today 14:00; "at 2pm yesterday" -> yesterday 14:00.

FIELD RULES:
- log_food: put the FULL description including quantity and size words in "item"
  ("one tiny walnut", "2 slices of pizza", "3 bananas"). Add "mealType" when a meal is mentioned.
- log_water: "amount" and "unit".
- log_vitamin: the supplement name in "vitaminName" (taking an existing supplement).
- add_new_vitamin: only when the user sets up a new supplement. "vitaminName", "frequency",
  "timesPerDay" and "dosage" when mentioned.
- log_symptom: "symptoms" array and "severity" (mild / moderate / severe).
- log_puqe_score: "notes" describing the nausea and vomiting.

Transcript: "{transcript}"

Examples:
- "I ate a potato for breakfast" ->
  {{"actions": [{{"type": "log_food", "details": {{"item": "1 medium potato", "mealType": "breakfast", "timestamp": "{breakfast}"}}, "confidence": 0.9}}]}}
- "I had a small banana for supper" ->
  {{"actions": [{{"type": "log_food", "details": {{"item": "1 small banana", "mealType": "dinner", "timestamp": "{supper}"}}, "confidence": 0.9}}]}}
- "I drank water 2 hours ago" ->
  {{"actions": [{{"type": "log_water", "details": {{"amount": "some", "unit": "water", "timestamp": "{two_hours_ago}"}}, "confidence": 0.85}}]}}
- "I took my vitamins this morning" ->
  {{"actions": [{{"type": "log_vitamin", "details": {{"vitaminName": "vitamins", "timestamp": "{breakfast}"}}, "confidence": 0.95}}]}}
"""


def macros_prompt(food_description: str) -> str:
    return f"""Estimate nutritional macros for: "{food_description}"

- Pay close attention to quantity descriptors (tiny, small, medium, large, handful) and counts (1, 2, half).
- Use USDA nutritional data.
- "tiny"/"small" = 50-70% of a standard serving; "medium" or no descriptor = 100%;
  "large"/"big" = 150-200%; "handful" = about 28 g; "bowl" = 1.5-2 cups; "plate" = 2-3 cups.
- Examples: "one tiny walnut" -> 13-18 cal; "handful of walnuts" -> 180-190 cal;
  "2 slices of pizza" -> 550-600 cal; "1 large apple" -> 120-130 cal.

Return calories, protein, carbs and fat for the EXACT portion described."""


def suggestions_prompt(nausea_level: int, preferences: list[str]) -> str:
    prefs = ", ".join(preferences) if preferences else "none"
    return f"""Suggest foods for a pregnant person with nausea level {nausea_level}/10.
Consider these preferences: {prefs}

Return 5 suggestions, each with food, reason, nutritionalBenefit, preparationTip and avoidIfHigh
(true when it should be avoided at high nausea)."""


IMAGE_PROMPT = """Analyze this food image and estimate its nutrition.

- Be realistic with portion sizes people actually eat.
- Include oils, butter, sauces, condiments and toppings that are visible.
- Account for the cooking method; fried food carries more calories than steamed.
- Prefer a slight overestimate to an underestimate.

For each item give name, quantity, estimatedCalories, protein, carbs, fat and fiber,
then the totals across all items."""
