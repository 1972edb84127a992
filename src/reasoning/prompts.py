"""Instruction templates for conversation analysis.

One template per detail level. Each asks for structured JSON only, with
exactly the sections the level is entitled to, so the provider doesn't spend
tokens on sections the shaper would strip anyway.
"""

SYSTEM_PROMPT = (
    "You are a communication expert who analyzes tone, patterns, and dynamics "
    "in conversations. Provide insightful, specific feedback that is helpful "
    "but honest.\n\n"
    "Respond with structured JSON only. No markdown fences, no explanations "
    "outside the JSON."
)

_HEALTH_SCHEMA = (
    '"healthScore": {"score": 72, "label": "Conflict|Tense|Neutral|Healthy|Very Healthy", '
    '"color": "red|yellow|light-green|green"}'
)

PROMPT_BASIC = (
    "Analyze the conversation between {participants}.\n\n"
    "Return JSON with ONLY the following structure:\n"
    "{{\n"
    '  "toneAnalysis": {{"overallTone": "one sentence on the overall emotional tone", '
    '"emotionalState": [{{"emotion": "frustration", "intensity": 6}}]}},\n'
    '  "communication": {{"patterns": ["2-3 distinct patterns, each a complete sentence"]}},\n'
    "  " + _HEALTH_SCHEMA.replace("{", "{{").replace("}", "}}") + ",\n"
    '  "redFlagCount": 0\n'
    "}}\n\n"
    "intensity is an integer 0-10. score is an integer 0-100. redFlagCount is how many "
    "concerning behaviours (manipulation, contempt, threats, stonewalling) you see; "
    "do not describe them."
)

PROMPT_STANDARD = (
    "Analyze the conversation between {participants}.\n\n"
    "Return JSON with the following structure:\n"
    "{{\n"
    '  "toneAnalysis": {{"overallTone": "...", '
    '"emotionalState": [{{"emotion": "...", "intensity": 6}}], '
    '"participantTones": {{"<participant>": "tone and communication style"}}}},\n'
    '  "communication": {{"patterns": ["..."], "suggestions": ["..."]}},\n'
    '  "redFlags": [{{"type": "...", "description": "...", "severity": 5, '
    '"participant": "<participant>", "evidenceQuotes": ["..."]}}],\n'
    "  " + _HEALTH_SCHEMA.replace("{", "{{").replace("}", "}}") + ",\n"
    '  "keyQuotes": [{{"speaker": "<participant>", "quote": "...", "analysis": "..."}}],\n'
    '  "manipulationScores": {{"<participant>": {{"score": 0, "label": "Low|Moderate|High", '
    '"tactics": ["..."]}}}},\n'
    '  "participantConflictScores": {{"<participant>": {{"score": 40, "label": "...", '
    '"isEscalating": false}}}},\n'
    '  "communicationStyles": {{"<participant>": "..."}},\n'
    '  "accountabilitySignals": {{"<participant>": {{"score": "Low|Moderate|High", '
    '"description": "..."}}}},\n'
    '  "highTensionFactors": ["..."],\n'
    '  "tensionContributions": {{"<participant>": ["..."]}},\n'
    '  "tensionMeaning": "...",\n'
    '  "empatheticSummary": {{"<participant>": {{"summary": "two or three compassionate sentences", '
    '"insights": "...", "growthAreas": ["..."], "strengths": ["..."]}}}}\n'
    "}}\n\n"
    "Rules:\n"
    "1. severity and intensity are integers 0-10; scores are integers 0-100 unless shown otherwise "
    "(manipulation score is 0-10).\n"
    "2. Only include tensionContributions and tensionMeaning when there is moderate to high tension.\n"
    "3. Do not describe ordinary appreciation or affection as dependency or validation seeking.\n"
    "4. Quote messages exactly as written."
)

PROMPT_FULL = (
    PROMPT_STANDARD[: PROMPT_STANDARD.index("\n}}\n\nRules:")]
    + ",\n"
    '  "dramaScore": 4,\n'
    '  "powerDynamics": {{"overallDynamics": "...", "participantRoles": {{"<participant>": "..."}}}},\n'
    '  "messageDominance": {{"summary": "...", "participantData": {{"<participant>": '
    '{{"messagePercentage": 50, "dominanceLevel": "..."}}}}}},\n'
    '  "evasionDetection": {{"detected": false, "participants": {{"<participant>": '
    '{{"count": 0, "examples": ["..."]}}}}}},\n'
    '  "psychologicalProfile": {{"<participant>": {{"behavior": "...", "emotionalState": "...", '
    '"riskIndicators": "..."}}}},\n'
    '  "communicationPatternComparison": {{"<participant>": [{{"pattern": "...", "example": "exact quote"}}]}},\n'
    '  "relationshipHealthIndicators": {{"currentScore": 55, "currentLabel": "...", '
    '"primaryConcerns": [{{"issue": "...", "severity": 5, "participant": "<participant>"}}], '
    '"patterns": {{"recurring": ["..."], "escalating": ["..."], "improving": ["..."]}}, '
    '"projectedOutcome": "...", "recommendedFocus": ["..."]}},\n'
    '  "personalizedGrowthRecommendations": {{"<participant>": [{{"area": "...", '
    '"recommendation": "...", "example": "..."}}]}},\n'
    '  "redFlagsTimeline": {{"overview": "...", "progression": [{{"position": "early|middle|late", '
    '"positionIndex": 0, "quoteIndex": 0, "type": "...", "description": "...", "severity": 5, '
    '"participant": "<participant>"}}], "escalationPoints": [{{"position": "...", '
    '"description": "...", "severityJump": 2, "participant": "<participant>"}}]}}\n'
    "}}\n\n"
    "Also include communication.dynamics: a list of sentences on who leads, who yields, "
    "and how influence shifts.\n\n"
    "Rules:\n"
    "1. severity, intensity and dramaScore are integers 0-10; scores are integers 0-100 unless "
    "shown otherwise (manipulation score is 0-10).\n"
    "2. Only include tensionContributions and tensionMeaning when there is moderate to high tension.\n"
    "3. Do not describe ordinary appreciation or affection as dependency or validation seeking.\n"
    "4. Quote messages exactly as written."
)

GROUP_PREAMBLE = (
    "This is a group chat with {count} participants: {participants}.\n"
    "Give every participant an entry in toneAnalysis.participantTones, note who "
    "drives each topic, and identify any sub-groups or alliances.\n\n"
)

TEMPLATES = {
    "basic": PROMPT_BASIC,
    "standard": PROMPT_STANDARD,
    "full": PROMPT_FULL,
}


def build_instructions(policy, request) -> str:
    """Instructions for one analysis at the policy's detail level."""
    labels = list(request.participant_labels)
    participants = ", ".join(labels)
    instructions = TEMPLATES[policy.detail_level.label].format(participants=participants)
    if request.is_group:
        instructions = GROUP_PREAMBLE.format(count=len(labels), participants=participants) + instructions
    return instructions
