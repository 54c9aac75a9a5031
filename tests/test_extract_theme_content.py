from sqlalchemy import select

from shared.models.models import CommentThemeExtract
from services.pipeline.themes import extract_theme_content
from services.pipeline.themes.extract_theme_content import clean_extract, comment_text, select_comments, should_filter_text

from tests.conftest import DOCUMENT_ID, FakeLLM, add_comment, add_condensed, add_themes

EXTRACT = "You are extracting what a single commenter"


def test_should_filter_text():
    assert should_filter_text("No specific concerns were raised about this theme")
    assert should_filter_text("There is no mention of costs")
    assert should_filter_text("The commenter did not discuss enforcement at any point in the letter, "
                              "focusing instead on patient access and the burden on rural facilities.")
    assert not should_filter_text("Small clinics cannot afford new reporting software")
    assert not should_filter_text("Nobody at our clinic was consulted")


def test_should_filter_text_needs_bare_no_token():
    assert should_filter_text("no")
    assert should_filter_text("  No  ")
    assert should_filter_text("Answer: no")
    assert not should_filter_text("Costs: no.")
    assert not should_filter_text("Offer a no-cost waiver")
    assert not should_filter_text("Yes, no, maybe")
    long_text = " ".join(["word"] * 19 + ["no"])
    assert not should_filter_text(long_text)


def test_clean_extract_drops_placeholders_and_empty_sections():
    entry = {'relevance': 1, 'extract': {
        'positions': ["Opposes the deadline"],
        'concerns': ["No specific concerns", "   "],
        'recommendations': "not a list",
        'key_quotes': ["\"We will close.\""],
    }}
    assert clean_extract(entry) == {'relevance': 1, 'extract': {
        'positions': ["Opposes the deadline"],
        'key_quotes': ["\"We will close.\""],
    }}
    assert clean_extract({'relevance': 1, 'extract': {'concerns': ["Not addressed"]}}) is None
    assert clean_extract({'relevance': 1}) is None


def test_comment_text_skips_placeholder_quotes():
    text = comment_text({'keyQuotations': 'No standout quotations', 'detailedContent': '- Detail'})
    assert text == "## Detailed Analysis\n- Detail"
    text = comment_text({'keyQuotations': '- "Close clinics"', 'detailedContent': '- Detail'})
    assert text.startswith("## Notable Quotes from Commenter\n- \"Close clinics\"")


def stored(manager):
    with manager.get_session() as session:
        return {(row.comment_id, row.theme_code): row.extract_json for row in session.scalars(select(CommentThemeExtract))}


def test_extract_keeps_relevant_known_themes(manager, db_dir):
    add_themes(manager)
    add_comment(manager, 'C-1')
    add_condensed(manager, 'C-1')
    response = {
        '1': {'relevance': 1, 'extract': {'concerns': ["Software costs are too high for small clinics"]}},
        '1.1': {'relevance': 2, 'extract': {'concerns': ["Touches on solo practices"]}},
        '2': {'relevance': 1, 'extract': {'concerns': ["Not discussed"]}},
        '7': {'relevance': 1, 'extract': {'concerns': ["Unknown theme content here"]}},
    }
    llm = FakeLLM([(EXTRACT, response)])

    stats = extract_theme_content.run(DOCUMENT_ID, concurrency=1, db_dir=db_dir, llm=llm)

    assert stats == {'processed': 1, 'successful': 1, 'failed': 0, 'extracts': 1}
    assert stored(manager) == {('C-1', '1'): {
        'relevance': 1, 'extract': {'concerns': ["Software costs are too high for small clinics"]}
    }}
    assert "1.1: Small Practice Burden. Guidelines for 1.1" in llm.calls[0]['prompt']
    assert select_comments(manager) == []


def test_failures_are_counted(manager, db_dir):
    add_themes(manager)
    for comment_id in ('C-1', 'C-2'):
        add_comment(manager, comment_id)
        add_condensed(manager, comment_id)

    def respond(prompt):
        if 'C-1 says' in prompt:
            return "not json"
        return {'2': {'relevance': 1, 'extract': {'positions': ["Wait times will grow for rural patients"]}}}

    stats = extract_theme_content.run(DOCUMENT_ID, concurrency=2, db_dir=db_dir, llm=FakeLLM([(EXTRACT, respond)]))
    assert stats == {'processed': 2, 'successful': 1, 'failed': 1, 'extracts': 1}
    assert [cid for cid, _ in select_comments(manager)] == ['C-1']
