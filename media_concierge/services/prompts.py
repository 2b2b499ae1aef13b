"""System prompts and response templates for the language-model calls.

This module defines:
1. Parsing prompts used by the intent parser (query extraction, ordinal/year
   selection, season/episode selection, topic switch detection)
2. The responder system prompt and per-template instructions used by the
   response generator
3. Deterministic fallback texts used when the responder model is unavailable

The parsing prompts ask for bare JSON so the parser can validate the output
against the selection models directly.
"""

from typing import Any


# =============================================================================
# Parsing Prompts
# =============================================================================

EXTRACT_QUERY_PROMPT = """You extract the title a user wants to find from a chat message about movies or TV shows.

## Rules

1. Return ONLY the title or search terms, nothing else.
2. Drop action words (download, add, get, grab, find, search for, look for, delete, remove, unmonitor, get rid of).
3. Drop media nouns (movie, film, show, series, tv, television) unless they are part of the title.
4. Drop selection details such as "the second one", "from 1999" or "season 2".
5. Do not wrap the answer in quotes.

## Examples

- "download the matrix" -> the matrix
- "can you add breaking bad season 1" -> breaking bad
- "remove the office from the library" -> the office
- "get dune, the 2021 one" -> dune"""


SELECTION_PARSING_PROMPT = """You interpret how a user picks one item from a numbered list of search results.

Respond with ONLY a JSON object, no markdown:

- By position: {"selectionType": "ordinal", "value": "<position starting at 1>"}
- By release year: {"selectionType": "year", "value": "<four digit year>"}
- If the message does not pick an item: {"error": "<short reason>"}

## Examples

- "the second one" -> {"selectionType": "ordinal", "value": "2"}
- "#3 please" -> {"selectionType": "ordinal", "value": "3"}
- "the one from 1999" -> {"selectionType": "year", "value": "1999"}
- "the last one" with 4 results listed -> {"selectionType": "ordinal", "value": "4"}
- "download the matrix" -> {"error": "no selection"}"""


STRUCTURED_SELECTION_PARSING_PROMPT = """You interpret which seasons and episodes of a TV show a user wants.

Respond with ONLY a JSON object, no markdown:

- Entire series: {}
- Specific seasons/episodes: {"selection": [{"season": <n>}, {"season": <n>, "episodes": [<n>, ...]}]}
- If the message does not mention seasons or episodes: {"error": "<short reason>"}

## Examples

- "all of it" -> {}
- "the whole show" -> {}
- "season 1" -> {"selection": [{"season": 1}]}
- "seasons 1 and 3" -> {"selection": [{"season": 1}, {"season": 3}]}
- "season 2 episodes 1 through 3" -> {"selection": [{"season": 2, "episodes": [1, 2, 3]}]}
- "the second one" -> {"error": "no season or episode information"}"""


TOPIC_SWITCH_DETECTION_PROMPT = """You decide whether a chat message still answers a pending question from a media concierge, or starts something new.

The concierge asked the user to pick a title from a list, or to pick seasons of a show. You are given that pending question and the user's new message.

Respond with ONLY one word:

- CONTINUE: the message picks from the list, gives seasons or episodes, or refers to the pending titles ("the second one", "download the 2003 one", "season 1", "all of it")
- SWITCH: the message names a different title, asks about something else, or abandons the question ("actually get dune instead", "what's downloading?", "never mind")

When unsure, answer CONTINUE."""


# =============================================================================
# Responder Prompts
# =============================================================================

RESPONDER_SYSTEM_PROMPT = """You are a friendly media concierge in a group chat. You help people add and remove movies and TV shows from a shared media library.

## Current Turn
**Phase**: {phase}

## Task
{instructions}

## Facts
{facts_block}

## Guidelines

1. Only mention titles listed under Facts; never invent titles, years or progress numbers.
2. Put every title in double quotes.
3. Keep replies short: one or two sentences, or a numbered list when asking the user to choose."""


RESPONSE_INSTRUCTIONS: dict[str, str] = {
    "clarify_query": "Ask the user which movie or show they mean; their message did not name one.",
    "no_results": "Tell the user nothing matched their search and suggest checking the spelling.",
    "search_failed": "Apologize that the library service could not be reached and ask them to try again shortly.",
    "choose_candidate": "List the candidates as a numbered list and ask which one they want (by number or year).",
    "reprompt_candidate": "Say you could not tell which one they meant, then repeat the numbered list and ask again.",
    "choose_seasons": "Ask which seasons or episodes of the show they want, or whether they want the whole series.",
    "reprompt_seasons": "Say you could not tell which seasons they meant and ask again, mentioning they can say 'all'.",
    "added": "Confirm the title was added and a download search started.",
    "removed": "Confirm the title was removed from the library.",
    "operation_failed": "Tell the user the request failed and include the reason given under Facts.",
    "download_status": "List the downloads under Facts one per line, exactly as written, including the percentages.",
    "no_downloads": "Tell the user nothing is downloading right now.",
    "status_failed": "Apologize that download status could not be fetched and include the reason given under Facts.",
}


FALLBACK_TEMPLATES: dict[str, str] = {
    "clarify_query": "Which movie or show are you looking for?",
    "no_results": 'I couldn\'t find anything matching "{query}".',
    "search_failed": 'I couldn\'t search for "{query}" right now: {error}. Please try again in a bit.',
    "choose_candidate": 'I found a few matches for "{query}":\n{candidate_list}\nWhich one do you want?',
    "reprompt_candidate": 'Sorry, I couldn\'t tell which one you meant. Matches for "{query}":\n{candidate_list}\nReply with a number or a year.',
    "choose_seasons": 'Which seasons of "{title}" do you want? You can also say "all".',
    "reprompt_seasons": 'Sorry, I couldn\'t tell which seasons of "{title}" you meant. Try "season 1" or "all".',
    "added": 'Added "{title}" ({selection}) and started searching for downloads.',
    "removed": 'Removed "{title}" ({selection}) from the library.',
    "operation_failed": "{message}",
    "download_status": "Current downloads:\n{status_list}",
    "no_downloads": "Nothing is downloading right now.",
    "status_failed": "I couldn't check downloads right now: {error}.",
}


# =============================================================================
# Formatting
# =============================================================================


class _BlankMissing(dict):
    def __missing__(self, key: str) -> str:
        return ""


def build_facts_block(template_data: dict[str, Any]) -> str:
    """Render template data as a bullet list for the responder prompt.

    Args:
        template_data: Values the reply may refer to.

    Returns:
        Formatted facts block string
    """
    lines = []
    for key, value in template_data.items():
        if value is None or value == "":
            continue
        if isinstance(value, list):
            rendered = "; ".join(str(v) for v in value)
        else:
            rendered = str(value)
        lines.append(f"- **{key}**: {rendered}")

    if not lines:
        return "*No facts for this turn*"
    return "\n".join(lines)


def format_responder_prompt(
    phase: str,
    template_key: str,
    template_data: dict[str, Any],
) -> str:
    """Format the responder system prompt for one reply.

    Args:
        phase: Resolution phase the reply belongs to
        template_key: Which reply to produce (key of RESPONSE_INSTRUCTIONS)
        template_data: Facts the reply may use

    Returns:
        Formatted system prompt string

    Raises:
        ValueError: If template_key is not recognized
    """
    if template_key not in RESPONSE_INSTRUCTIONS:
        raise ValueError(
            f"Unknown template key: '{template_key}'. "
            f"Must be one of: {list(RESPONSE_INSTRUCTIONS.keys())}"
        )

    return RESPONDER_SYSTEM_PROMPT.format(
        phase=phase,
        instructions=RESPONSE_INSTRUCTIONS[template_key],
        facts_block=build_facts_block(template_data),
    )


def format_fallback_response(template_key: str, template_data: dict[str, Any]) -> str:
    """Render the deterministic reply for a template.

    Missing placeholders render as empty strings. Unknown keys fall back to
    the ``message`` value, if any.
    """
    template = FALLBACK_TEMPLATES.get(template_key, "{message}")
    return template.format_map(_BlankMissing(template_data)).strip()
