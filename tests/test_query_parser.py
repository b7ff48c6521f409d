from loreseek.core.config import RetrievalConfig
from loreseek.core.types import Importance, QueryIntent, WorldContextIntent
from loreseek.retrieval.query_parser import (
    format_world_context_intent,
    intent_to_retrieval_config,
    parse_world_context_intent,
    validate_world_context_intent,
)


INTENT = """
Some preamble the model wrote.
<WorldContextIntent>
<Analysis>The player asks about the dragon.</Analysis>
<Queries>
- query: "龙的弱点"
  collections: [bestiary, "legends"]
  importance: "must_have"
- query: '王城历史'
  importance: "optional"
- query：“no ascii quotes”
- query："城门"
  collections: []
</Queries>
</WorldContextIntent>
trailing text
"""


def test_parse_entries():
    intent = parse_world_context_intent(INTENT)

    assert intent.analysis == "The player asks about the dragon."
    assert intent.queries == [
        QueryIntent(query="龙的弱点", collections=["bestiary", "legends"], importance=Importance.MUST_HAVE),
        QueryIntent(query="王城历史", collections=[], importance=Importance.NICE_TO_HAVE),
        QueryIntent(query="城门", collections=[], importance=Importance.NICE_TO_HAVE),
    ]


def test_parse_without_block_or_text():
    assert parse_world_context_intent("no intent here") is None
    assert parse_world_context_intent("") is None
    assert parse_world_context_intent(None) is None


def test_parse_block_without_queries():
    intent = parse_world_context_intent("<WorldContextIntent><Analysis>x</Analysis></WorldContextIntent>")
    assert intent.analysis == "x"
    assert intent.queries == []


def test_parse_is_case_insensitive_on_tags():
    intent = parse_world_context_intent('<worldcontextintent><queries>- query: "a"</queries></worldcontextintent>')
    assert [q.query for q in intent.queries] == ["a"]


def test_validate():
    assert validate_world_context_intent(parse_world_context_intent(INTENT)).valid
    assert not validate_world_context_intent(None).valid

    report = validate_world_context_intent(WorldContextIntent())
    assert report.errors == ["at least one query is required"]

    report = validate_world_context_intent(
        WorldContextIntent(queries=[QueryIntent(query=""), QueryIntent(query="x", importance="urgent")])
    )
    assert report.errors == ["queries[0] has no query text", "queries[1] has invalid importance: urgent"]


def test_format():
    intent = WorldContextIntent(
        analysis="why",
        queries=[QueryIntent(query="龙", collections=["a", "b"], importance=Importance.MUST_HAVE)],
    )
    assert format_world_context_intent(intent) == "\n".join([
        "Analysis:",
        "why",
        "",
        "Queries:",
        "1. 龙",
        "   collections: a, b",
        "   importance: must_have",
        "",
    ])
    assert format_world_context_intent(None) == ""


def test_intent_to_retrieval_config():
    config = RetrievalConfig(token_budget=500)
    queries, resolved = intent_to_retrieval_config(parse_world_context_intent(INTENT), config)
    assert [q.query for q in queries] == ["龙的弱点", "王城历史", "城门"]
    assert resolved is config

    queries, resolved = intent_to_retrieval_config(None)
    assert queries == []
    assert resolved == RetrievalConfig()
