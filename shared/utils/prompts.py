placeholder_phrases = [
    'nothing to extract',
    'no relevant',
    'no specific',
    'not addressed',
    'not discussed',
    'not mentioned',
    'no information',
    'no content',
    'the commenter did not',
    'the commenter does not',
]

condense_prompt = '''You are an expert policy analyst. You will receive one public comment submitted on a federal regulation. Rewrite it as a structured, condensed record that keeps every substantive point and organizes it into fixed sections that downstream tools can parse.

Use EXACTLY these section headers, in this order, each starting with "### ":

### ONE-LINE SUMMARY
One sentence: who the commenter is and what they want.

### COMMENTER PROFILE
- **Name/Organization:** name if given, otherwise "Anonymous"
- **Type:** Individual | Business | Healthcare Provider | Advocacy Group | Government Entity | Trade Association | Academic/Research | Other
- **Role/Expertise:** professional role or relevant experience, if stated
- **Geographic Scope:** Local/State/National/International, with location if stated
- **Stake in Issue:** how the regulation affects them

### CORE POSITION
Two or three sentences in the commenter's own voice stating their stance and main argument.

### KEY RECOMMENDATIONS
One bullet per recommendation, with indented sub-bullets for details. If there are none, write "No specific recommendations provided".

### MAIN CONCERNS
One bullet per concern, with indented sub-bullets for examples or evidence. If there are none, write "No specific concerns raised".

### NOTABLE EXPERIENCES & INSIGHTS
Personal stories, case studies, surprising data or unexpected consequences. If there are none, write "No distinctive experiences shared".

### KEY QUOTATIONS
One to three verbatim quotes, each on its own bullet in double quotes. If none stand out, write "No standout quotations".

### DETAILED CONTENT
The full comment as a nested bullet outline. Bullets and sub-bullets only, no bold or headers. Keep the original order, all evidence, numbers, citations and examples.

Guidelines:
1. Keep every policy position, recommendation, statistic, cost estimate and example.
2. Drop salutations, thanks, self-promotion and repetition.
3. Prefer plain language, but keep technical terms and acronyms the commenter uses.
4. Keep the commenter's tone and voice.

IMPORTANT: ONLY output the sections above. Do not add any text before the first header.

Here is the comment:

{COMMENT_TEXT}'''

taxonomy_format = '''OUTPUT PLAIN TEXT ONLY. ONE PARAGRAPH PER THEME, EACH STARTING AT THE BEGINNING OF A LINE.

Every paragraph MUST follow this format:
[Number]. [Label]. [Brief Description] || [Detailed Guidelines]

- Number: hierarchical numbering (1, 1.1, 1.1.1, 2, ...)
- Label: a short theme name, under 12 words
- Brief Description: one sentence on what the theme covers
- " || ": a double pipe with one space on each side; it is REQUIRED
- Detailed Guidelines: 3-5 sentences covering what belongs in the theme (with examples), what does not, and how it differs from neighbouring themes

Example:
1. Administrative Burden. Concerns about paperwork and reporting costs the rule would create. || Includes staff time for documentation, new software costs and reporting complexity for small practices. Excludes general opposition to the rule and clinical quality concerns. The defining feature is the administrative, not clinical, impact.

1.1. Small Practice Impact. How the reporting burden falls on small and rural practices. || Includes lack of compliance staff, inability to afford systems and risk of closure. Excludes large hospital systems. The distinguishing factor is practice size and resources.
'''

theme_discovery_prompt = '''You are an expert policy analyst. Build a detailed hierarchical taxonomy of the policy themes raised in the structured public comments below.

Each comment gives the commenter's profile, core position, key recommendations and main concerns. Your taxonomy should:
1. Separate distinct policy positions and arguments.
2. Group similar recommendations and similar concerns.
3. Use commenter profiles to see which stakeholders hold which views.
4. Go as deep as the material needs; four or five levels is fine.
5. Prefer a specific sub-theme over lumping distinct ideas together.

Skip procedural remarks and generic statements.

--- FORMAT ---
''' + taxonomy_format + '''--- END FORMAT ---

--- STRUCTURED COMMENTS ---
{COMMENTS}
--- END STRUCTURED COMMENTS ---

Now write the complete taxonomy, following the format exactly.'''

theme_merge_prompt = '''You are a senior policy analyst. Merge the theme taxonomies below, each built from a different batch of comments, into ONE two-level taxonomy.

{TAXONOMIES}

Instructions:
1. Keep every substantive topic that could support a one-page issue brief.
2. Create 10-15 top-level themes as logical groupings and many specific second-level themes beneath them.
3. Combine duplicates across inputs, but keep opposing viewpoints as separate themes.
4. Keep concrete details such as names, numbers and technologies in the descriptions.
5. Use issue-focused labels, never "Other" or "General".

--- FORMAT ---
''' + taxonomy_format + '''--- END FORMAT ---'''

theme_scoring_prompt = '''Score how the public comment below relates to each theme in the taxonomy.

Scale:
1 = addresses the theme substantively (specific arguments, evidence or recommendations)
2 = touches on the theme briefly or in passing
3 = does not address the theme

Rules:
- Score EVERY theme code at every level. There are exactly {THEME_COUNT} codes.
- If a sub-theme scores 1, its parents should score at least 2.
- Judge substance, not keyword matches.

Return a JSON object with theme codes as keys and scores as integer values, for example:
{"1": 2, "1.1": 3, "1.2": 1, "2": 3}

THEME HIERARCHY:
{THEME_HIERARCHY}

COMMENT:
{COMMENT}

IMPORTANT: ONLY output the json.'''

theme_extract_prompt = '''You are extracting what a single commenter actually says about each theme of a regulatory taxonomy. Keep their specifics: numbers, places, conditions, stories and their own words.

## Theme Hierarchy
{THEME_HIERARCHY}

## Comment
{COMMENT}

## Output
Return a JSON object keyed by theme code:
```json
{
  "1.2": {
    "relevance": 1,
    "extract": {
      "positions": ["their stance and the reasoning they give"],
      "concerns": ["specific worries with the details they provide"],
      "recommendations": ["concrete suggestions with any timelines or conditions"],
      "experiences": ["stories, examples or data they share"],
      "key_quotes": ["verbatim quotes"]
    }
  }
}
```
relevance is 1 for substantive discussion, 2 for a brief mention and 3 when not addressed.

Rules:
- Put each point under the single most specific theme it belongs to.
- Leave a list empty [] when the commenter says nothing of that kind. Never write placeholders such as "No recommendations provided".
- Only include content that is actually in the comment.

IMPORTANT: ONLY output the json.'''

theme_summary_prompt = '''You are a policy analyst summarizing public input on one regulatory theme for decision makers.

## Theme
{THEME_CODE}: {THEME_DESCRIPTION}

## Extracts
The extracts below contain only what each commenter said about this theme.

{EXTRACTS}

## Write these sections
### CONSENSUS POINTS
Points of broad agreement, how widely held (quantify), 2-3 example comment ids, and notable exceptions.

### AREAS OF DEBATE
For each disputed topic, the competing positions with a short label, how many hold each, their strongest arguments and representative comment ids.

### STAKEHOLDER PERSPECTIVES
By commenter type: their main concerns, what only they emphasize, and their preferred solutions.

### NOTEWORTHY INSIGHTS
Unusual, well-argued or surprising points, with comment ids.

### EMERGING PATTERNS
Regional, sector or experience-related patterns and knock-on effects several commenters identify.

### KEY QUOTATIONS
3-5 verbatim quotes with commenter type and comment id.

### EXECUTIVE SUMMARY
Two or three sentences on overall sentiment, the main tensions and the dominant recommendations.

Quantify where possible, keep commenters' own phrases, and give fair weight to well-argued minority views.'''

extract_merge_prompt = '''You are merging several analyses of the same theme. Each analysis covers a different batch of comments.

## Theme
{THEME_CODE}: {THEME_DESCRIPTION}

## Analyses
{EXTRACT_SETS}

Combine them into one analysis with the same sections. Add up support counts across batches, merge debates on the same topic, keep every distinct insight, keep representative comment ids from all batches, choose at most 5 quotations overall, and write a new executive summary covering all comments. The result should read as if all comments were analyzed at once.'''

theme_structure_prompt = '''Convert the theme analysis below into JSON with exactly this structure:

```json
{
  "executiveSummary": "2-3 sentences",
  "consensusPoints": [
    {"text": "point of agreement", "supportLevel": "e.g. nearly all commenters", "evidence": ["comment ids or examples"], "exceptions": "caveats or empty string", "organizations": ["organizations named"]}
  ],
  "areasOfDebate": [
    {"topic": "debate topic", "description": "what is disputed",
     "positions": [{"label": "1-4 words", "stance": "position", "supportLevel": "who holds it", "keyArguments": ["argument"], "organizations": ["organization"]}],
     "middleGround": "compromise ideas or empty string"}
  ],
  "stakeholderPerspectives": [
    {"stakeholderType": "type", "primaryConcerns": ["concern"], "specificPoints": ["point"], "organizations": ["organization"]}
  ],
  "noteworthyInsights": [{"insight": "text", "source": "comment id"}],
  "emergingPatterns": [{"pattern": "text", "category": "geographic | sector | experience | consequence"}],
  "keyQuotations": [{"quote": "verbatim", "source": "comment id", "sourceType": "commenter type"}],
  "analyticalNotes": "anything that does not fit above"
}
```

Theme: {THEME_CODE}: {THEME_DESCRIPTION}

ANALYSIS:
{ANALYSIS}

IMPORTANT: ONLY output the json.'''
