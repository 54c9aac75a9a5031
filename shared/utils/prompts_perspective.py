"""
Prompts for perspective abstraction and theme-level analysis.
"""

attribute_types = [
    'submitter_type',
    'market_segment',
    'geographic_scope',
    'stakeholder_category',
    'technical_sophistication',
    'regulatory_stance',
    'sentiment',
]

abstract_prompt = '''Analyze this public comment using the theme taxonomy and the attribute values observed so far.

THEME TAXONOMY:
{TAXONOMY}

OBSERVED ATTRIBUTES (reuse these values where they fit; add a new value only when none fits):
{ATTRIBUTES}

COMMENT:
{CONTENT}

Extract:
1. Every distinct perspective: the most specific taxonomy code, a neutral one-sentence framing of the viewpoint, an exact excerpt from the comment, and a sentiment (supportive, opposed, mixed, neutral or concerned).
2. Who submitted it, with your confidence from 0 to 1.
3. Attributes: market segment, geographic scope, stakeholder category, technical sophistication (low, medium, high) and regulatory stance.
4. The 3-5 primary theme codes by emphasis.

Return JSON:
```json
{
  "submitter": {"type": "submitter type", "confidence": 0.9, "organization": "organization name or null"},
  "attributes": {
    "market_segment": "value",
    "geographic_scope": "value",
    "stakeholder_category": "value",
    "technical_sophistication": "value",
    "regulatory_stance": "value"
  },
  "primary_themes": ["1.2", "3.1"],
  "perspectives": [
    {"taxonomy_code": "1.2", "perspective": "viewpoint", "excerpt": "exact quote", "sentiment": "opposed"}
  ]
}
```

IMPORTANT: ONLY output the json.'''

theme_narrative_prompt = '''Analyze the perspectives on theme {THEME_CODE}: {THEME_DESCRIPTION}

There are {TOTAL_PERSPECTIVES} perspectives from {TOTAL_DOCUMENTS} comments, from {UNIQUE_STAKEHOLDERS} stakeholder types.

PERSPECTIVES:
{PERSPECTIVES_LIST}

Tasks:
1. Write a 2-3 paragraph narrative covering where commenters agree, where they disagree and why, and any surprising alignments between stakeholder groups. Cite perspectives as "(ID: 123)" or "(ID: 123, 456)".
2. Fill in the structured fields below. Arrays may be empty.

Return ONLY this JSON object:
{
  "narrative_summary": "2-3 paragraphs separated by blank lines",
  "consensus_points": [
    {"statement": "what they agree on", "strength": "universal|strong|moderate", "stakeholders": ["types"], "example_quote": "quote"}
  ],
  "debate_points": [
    {"topic": "what they disagree about",
     "positions": [{"stance": "position", "held_by": ["types"], "reasoning": "why"}],
     "core_tension": "the underlying disagreement"}
  ],
  "stakeholder_dynamics": {
    "aligned_groups": [["GroupA", "GroupB"]],
    "opposing_groups": [["GroupC", "GroupD"]],
    "bridge_builders": ["groups proposing compromises"]
  },
  "supporting_stats": {
    "total_perspectives": {TOTAL_PERSPECTIVES},
    "total_stakeholders": {UNIQUE_STAKEHOLDERS},
    "consensus_ratio": 0.0
  }
}'''

stance_detection_prompt = '''Analyze the perspectives on theme {THEME_CODE}: {THEME_DESCRIPTION}

Below are {COUNT} perspectives. Identify the 3-5 main STANCES people take: positions on what should be done, not stakeholder types. Stances should be mutually exclusive so each perspective fits one clearly, for example "Require immediately" vs "Phase in gradually" vs "Keep voluntary".

PERSPECTIVES:
{PERSPECTIVES_LIST}

Return ONLY this JSON object:
{
  "stances": [
    {"stance_key": "short_snake_case_id", "stance_label": "Readable Label", "stance_description": "1-2 sentences",
     "typical_arguments": ["argument"], "example_quotes": ["quote"]}
  ],
  "perspective_mapping": [
    {"perspective_id": 1, "stance_key": "short_snake_case_id", "confidence": 0.9}
  ],
  "mapping_notes": "how the stances were identified"
}'''
