"""Step definitions for context queries."""
from __future__ import annotations

from pytest_bdd import parsers, then, when

from conftest import BDDTestContext, parse_datatable


def _query(test_context: BDDTestContext, **kwargs):
    from provenance_tool.models import ContextQuery
    from provenance_tool.query import query_context

    query = ContextQuery(workspace_id=test_context.workspace.id, **kwargs)
    test_context.response = query_context(test_context.conn, query, test_context.workspace.path, agent="bdd")


@when(parsers.re(r'I query context for path "(?P<path>[^"]+)"$'))
def query_path(test_context: BDDTestContext, path: str):
    _query(test_context, path=path)


@when(parsers.parse('I query context for text "{text}"'))
def query_text(test_context: BDDTestContext, text: str):
    _query(test_context, query=text)


@when(parsers.parse('I query context for path "{path}" with types "{types}"'))
def query_path_with_types(test_context: BDDTestContext, path: str, types: str):
    _query(test_context, path=path, types=types.split(","))


@when(parsers.parse('I query context for path "{path}" with a budget of {budget:d} tokens'))
def query_path_with_budget(test_context: BDDTestContext, path: str, budget: int):
    _query(test_context, path=path, token_budget=budget)


@then("the nuggets should be in order:")
def nuggets_in_order(test_context: BDDTestContext, datatable):
    expected = [row["summary"] for row in parse_datatable(datatable)]
    assert [n.summary for n in test_context.response.nuggets] == expected


@then(parsers.parse('the response should include "{summary}"'))
def response_includes(test_context: BDDTestContext, summary: str):
    assert summary in [n.summary for n in test_context.response.nuggets]


@then(parsers.parse('every returned nugget should have type "{nugget_type}"'))
def all_of_type(test_context: BDDTestContext, nugget_type: str):
    assert test_context.response.nuggets
    assert {n.type for n in test_context.response.nuggets} == {nugget_type}


@then("the response should be truncated")
def response_truncated(test_context: BDDTestContext):
    budget = test_context.response.budget
    assert budget.truncated is True
    assert budget.used <= budget.requested


@then("the response should not be truncated")
def response_not_truncated(test_context: BDDTestContext):
    assert test_context.response.budget.truncated is False
    assert test_context.response.more_context_hint is None


@then(parsers.parse('the hint should mention "{text}"'))
def hint_mentions(test_context: BDDTestContext, text: str):
    assert text in (test_context.response.more_context_hint or "")


@then(parsers.parse('the nugget "{summary}" should be stale because "{reason}"'))
def nugget_is_stale(test_context: BDDTestContext, summary: str, reason: str):
    matches = [n for n in test_context.response.nuggets if n.summary == summary]
    assert matches
    assert matches[0].stale is True
    assert matches[0].stale_reason == reason


@then(parsers.parse('"{path}" should be a coverage gap with {count:d} queries'))
def coverage_gap(test_context: BDDTestContext, path: str, count: int):
    from provenance_tool.nuggets import get_query_gaps

    gaps = get_query_gaps(test_context.conn, test_context.workspace.id)
    assert {"path": path, "query_count": count, "nugget_count": 0} in gaps
