"""
Tests for kql_console.tokens module.

Tests placeholder discovery, auto-context filling and the resolvers.
"""

import pytest

from kql_console.tokens import (
    MappingTokenResolver,
    PromptTokenResolver,
    StrictTokenResolver,
    UnresolvedTokenError,
    find_placeholders,
    substitute,
)


class RecordingResolver:
    """Resolver that records what it was asked for."""

    def __init__(self, values):
        self.values = values
        self.calls = []

    def resolve(self, names):
        self.calls.append(list(names))
        return {name: self.values.get(name, "") for name in names}


class TestFindPlaceholders:
    """Tests for find_placeholders function."""

    def test_order_of_first_appearance(self):
        text = "{{B}} {{A}} {{B}} {{C_1}}"
        assert find_placeholders(text) == ["B", "A", "C_1"]

    def test_malformed_markers_ignored(self):
        text = "{{ Spaced }} {{dash-name}} {{Unclosed} {Single}"
        assert find_placeholders(text) == []

    def test_no_placeholders(self):
        assert find_placeholders("SigninLogs | take 10") == []


class TestSubstitute:
    """Tests for substitute function."""

    def test_no_placeholders_returned_unchanged(self):
        resolver = RecordingResolver({})
        text = "SigninLogs | take 10"

        assert substitute(text, resolver=resolver) is text
        assert resolver.calls == []

    def test_repeated_name_resolved_once(self):
        resolver = RecordingResolver({"SourceIp": "10.0.0.5"})

        result = substitute("where a == '{{SourceIp}}' or b == '{{SourceIp}}'", resolver=resolver)

        assert result == "where a == '10.0.0.5' or b == '10.0.0.5'"
        assert resolver.calls == [["SourceIp"]]

    def test_auto_context_fills_first(self, sample_resource):
        resolver = RecordingResolver({"Hours": "4"})
        template = "where _ResourceId =~ '{{ResourceId}}' and ago({{Hours}}h) and rg == '{{ResourceGroup}}'"

        result = substitute(template, sample_resource.auto_context(), resolver)

        assert sample_resource.resource_id in result
        assert "rg == 'rg-app'" in result
        assert "ago(4h)" in result
        assert resolver.calls == [["Hours"]]

    def test_empty_auto_context_value_falls_through(self):
        resolver = RecordingResolver({"Location": "northeurope"})

        result = substitute("{{Location}}", {"Location": ""}, resolver)

        assert result == "northeurope"
        assert resolver.calls == [["Location"]]

    def test_resource_context_needs_no_prompt(self):
        resolver = RecordingResolver({})
        context = {"ResourceId": "/sub/rg-prod/vm1", "ResourceGroup": "rg-prod"}

        result = substitute("Resource: {{ResourceId}} in {{ResourceGroup}}", context, resolver)

        assert result == "Resource: /sub/rg-prod/vm1 in rg-prod"
        assert resolver.calls == []

    def test_empty_answer_is_valid(self):
        resolver = RecordingResolver({})
        assert substitute("x == '{{User}}'", resolver=resolver) == "x == ''"

    def test_inserted_values_not_rescanned(self):
        resolver = RecordingResolver({"A": "{{B}}", "B": "second"})

        result = substitute("{{A}}", resolver=resolver)

        assert result == "{{B}}"
        assert resolver.calls == [["A"]]

    def test_strict_by_default(self):
        with pytest.raises(UnresolvedTokenError) as exc_info:
            substitute("{{Zeta}} {{Alpha}}")

        assert exc_info.value.names == ("Alpha", "Zeta")
        assert "Unresolved placeholders: Alpha, Zeta" in str(exc_info.value)


class TestResolvers:
    """Tests for the TokenResolver implementations."""

    def test_strict_with_nothing_to_resolve(self):
        assert StrictTokenResolver().resolve([]) == {}

    def test_mapping_resolves(self):
        resolver = MappingTokenResolver({"UserPrincipalName": "alice@contoso.com", "Unused": "x"})
        assert resolver.resolve(["UserPrincipalName"]) == {"UserPrincipalName": "alice@contoso.com"}

    def test_mapping_lists_every_missing_name(self):
        resolver = MappingTokenResolver({"A": "1"})

        with pytest.raises(UnresolvedTokenError) as exc_info:
            resolver.resolve(["A", "C", "B"])

        assert exc_info.value.names == ("B", "C")

    def test_prompt_asks_in_order(self):
        prompts = []

        def ask(prompt):
            prompts.append(prompt)
            return f"value{len(prompts)}"

        values = PromptTokenResolver(ask).resolve(["DeviceName", "AccountName"])

        assert values == {"DeviceName": "value1", "AccountName": "value2"}
        assert prompts == ["Value for {{DeviceName}}", "Value for {{AccountName}}"]
