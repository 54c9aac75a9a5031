from shared.utils.condensed_sections import SECTION_KEYS, extract_structured_data, parse_condensed_sections

from tests.conftest import condensed_text


def test_parse_all_sections():
    sections, errors = parse_condensed_sections(condensed_text())
    assert errors == []
    assert list(sections) == SECTION_KEYS
    assert sections['oneLineSummary'] == "Supports the rule with changes"
    assert sections['detailedContent'].startswith("- The EPA reporting rule")


def test_parse_reports_missing_and_unknown_sections():
    text = "Here is the record\n### ONE-LINE SUMMARY\nShort\n### BONUS\nextra\n"
    sections, errors = parse_condensed_sections(text)
    assert sections == {'oneLineSummary': 'Short'}
    assert any(e.startswith('Unexpected content') for e in errors)
    assert 'Unknown section header: "BONUS"' in errors
    assert any(e.startswith('Missing required sections') for e in errors)


def test_parse_empty_text():
    sections, errors = parse_condensed_sections("")
    assert sections == {}
    assert len(errors) == 1


def test_structured_data_profile_and_lists():
    sections, _ = parse_condensed_sections(condensed_text(submitter="Rural Health Alliance"))
    data = extract_structured_data(sections)

    assert data['summary'] == "Supports the rule with changes"
    assert data['profile'] == {'nameorganization': 'Rural Health Alliance', 'type': 'Individual'}
    assert data['position'] == "The rule needs a longer timeline."
    assert data['recommendations'] == ["Delay the reporting deadline", "by at least one year"]
    assert data['concerns'] == ["Cost of compliance"]
    assert data['experiences'] == []
    assert data['quotations'] == ["This rule will close rural clinics."]


def test_structured_data_tolerates_missing_sections():
    data = extract_structured_data({})
    assert data['summary'] == ''
    assert data['profile'] == {}
    assert data['recommendations'] == []


def test_structured_data_bullets_at_any_indent():
    data = extract_structured_data({
        'mainConcerns': "- Cost\n    - Staff time\nplain line\n-no space\n* star bullet",
        'keyQuotations': '- "Straight quotes"\n- “Curly quotes”\n- \'Single quotes\'\n  - "Nested"',
    })
    assert data['concerns'] == ["Cost", "Staff time"]
    assert data['quotations'] == ["Straight quotes", "“Curly quotes”", "'Single quotes'", "Nested"]
