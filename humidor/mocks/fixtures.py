"""
Mock response fixtures for development and testing.

Scenarios:
- cohiba_robusto: clear band, assistant answers with a complete record
- fenced: the complete record wrapped in a ```json code fence
- unparseable: assistant replies with prose instead of JSON
- partial: assistant replies with JSON missing the description
"""

import json

MOCK_BAND_DESCRIPTION = (
    "A yellow and black band with a checkerboard pattern along the edges. "
    "The center panel reads \"COHIBA\" in bold black capitals above the word "
    "\"Habana, Cuba\", with a small Taino head logo on the left."
)

MOCK_UNQUOTED_DESCRIPTION = "Cohiba Robusto label, yellow/black"

MOCK_ASSISTANT_RECORD = {
    "fullName": "Cohiba Robusto",
    "brand": "Cohiba",
    "line": "Robusto",
    "description": "A short, rich Cuban robusto with a creamy draw and notes of cedar and cocoa.",
    "originCountry": "Cuba",
    "wrapperType": "Colorado",
    "strength": "Medium-Full",
    "commonNotes": ["cedar", "cocoa", "honey"],
    "recommendedPairings": ["aged rum", "espresso"],
}

SCENARIOS = {
    "cohiba_robusto": json.dumps(MOCK_ASSISTANT_RECORD),
    "fenced": "```json\n" + json.dumps(MOCK_ASSISTANT_RECORD) + "\n```",
    "unparseable": "I'm sorry, I could not find that cigar in the database.",
    "partial": json.dumps({"fullName": "Cohiba Robusto", "description": ""}),
}


def get_mock_assistant_reply(scenario: str = "cohiba_robusto") -> str:
    """
    Get the raw assistant reply text for a scenario.

    Args:
        scenario: Scenario name from SCENARIOS

    Returns:
        The reply text exactly as the assistant would return it
    """
    if scenario not in SCENARIOS:
        raise ValueError(f"Unknown scenario: {scenario}. Available: {list(SCENARIOS.keys())}")
    return SCENARIOS[scenario]
