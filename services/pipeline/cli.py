"""
Single entry point for every pipeline command.

Usage:
    comment-analysis load CMS-2025-0050-0031
    comment-analysis condense CMS-2025-0050-0031 --concurrency 8
    comment-analysis pipeline CMS-2025-0050-0031 --start-at 4
    comment-analysis cache stats CMS-2025-0050-0031
"""

import importlib
import sys

COMMANDS = {
    'load': ('services.pipeline.ingestion.load_comments', "Load comments from regulations.gov or a CSV export"),
    'condense': ('services.pipeline.condense.condense_comments', "Condense comments into structured sections"),
    'discover-themes': ('services.pipeline.themes.discover_themes', "Discover the theme hierarchy"),
    'score-themes': ('services.pipeline.themes.score_themes', "Score comments against themes"),
    'extract-theme-content': ('services.pipeline.themes.extract_theme_content', "Extract theme-specific content"),
    'summarize-themes': ('services.pipeline.themes.summarize_themes', "Summarize themes from extracts"),
    'discover-entities': ('services.pipeline.entities.discover_entities', "Discover entities and annotate comments"),
    'abstract-comments': ('services.pipeline.perspectives.abstract_comments', "Abstract comments into perspectives"),
    'analyze-themes': ('services.pipeline.perspectives.analyze_themes', "Generate theme narratives and stances"),
    'build-website': ('services.publication.build_website', "Export dashboard JSON files"),
    'pipeline': ('services.pipeline.run_full_pipeline', "Run the complete pipeline"),
    'cache': ('services.pipeline.cache.manage_cache', "Manage the LLM cache"),
}


def print_help():
    print("usage: comment-analysis <command> [options]\n")
    print("Analysis pipeline for public comments from regulations.gov\n")
    print("commands:")
    for name, (_, description) in COMMANDS.items():
        print(f"  {name:<24}{description}")


def main(argv=None):
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] in ('-h', '--help'):
        print_help()
        return 0 if argv else 1

    command, rest = argv[0], argv[1:]
    if command not in COMMANDS:
        print(f"comment-analysis: unknown command '{command}'\n", file=sys.stderr)
        print_help()
        return 2

    module = importlib.import_module(COMMANDS[command][0])
    module.main(rest)
    return 0


if __name__ == "__main__":
    sys.exit(main())
