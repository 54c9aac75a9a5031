"""
Prompts for entity taxonomy discovery.
"""

entity_discovery_prompt = '''Build a taxonomy of the named entities that appear in the public comments below: agencies, organizations, companies, programs, laws and regulations, technologies, places and similar concrete things commenters refer to by name.

Return a JSON object keyed by category name. Each category holds a list of entities:
```json
{
  "Government Agencies": [
    {"label": "EPA", "definition": "U.S. Environmental Protection Agency", "terms": ["EPA", "Environmental Protection Agency"]}
  ],
  "Laws and Regulations": [
    {"label": "Clean Air Act", "definition": "Federal air quality statute", "terms": ["Clean Air Act", "CAA"]}
  ]
}
```

Rules:
1. Use 5-12 categories with clear, non-overlapping names.
2. label is the name in common use, not necessarily the full formal name.
3. terms are EXACT strings as they appear in the comments, including abbreviations. Do not paraphrase; they are used for case-sensitive matching.
4. Only include entities that are actually mentioned.
5. Skip generic words ("the agency", "the rule") that would match everything.

COMMENTS:
{COMMENTS}

IMPORTANT: ONLY output the json.'''
