"""
Rule matcher tests

Covers:
- exact and substring triggers, case-insensitive
- priority ordering and non-global preference
- global triggers as catch-all second pass
- contact status filter
- button / list callbacks matched by trigger id only
- property: at most one rule, and a non-global match always beats a global one
"""
from dataclasses import dataclass

import pytest
from hypothesis import given, strategies as st

from resale_bot.domain.services.rule_matcher import callback_id, find_matching_rule


@dataclass
class Rule:
    trigger_text: str
    is_global_trigger: bool = False
    contact_filter: str = "ALL"
    priority: int = 0
    name: str = ""


# ============================================================================
# Texto livre
# ============================================================================


@pytest.mark.unit
class TestFreeText:

    def test_no_rules(self):
        assert find_matching_rule([], "oi", "NEW") is None

    def test_exact_match_case_insensitive(self):
        rule = Rule("Preço")
        assert find_matching_rule([rule], "  preço ", "NEW") is rule

    def test_substring_match(self):
        rule = Rule("preço")
        assert find_matching_rule([rule], "qual o preço do plano?", "NEW") is rule

    def test_no_match(self):
        assert find_matching_rule([Rule("preço")], "bom dia", "NEW") is None

    def test_empty_trigger_never_matches(self):
        assert find_matching_rule([Rule("   ")], "qualquer coisa", "NEW") is None

    def test_higher_priority_wins(self):
        low = Rule("plano", priority=1, name="low")
        high = Rule("plano", priority=5, name="high")
        assert find_matching_rule([low, high], "plano", "NEW") is high

    def test_null_priority_treated_as_zero(self):
        rule = Rule("plano", priority=None)
        other = Rule("plano", priority=1)
        assert find_matching_rule([rule, other], "plano", "NEW") is other


# ============================================================================
# Gatilhos globais
# ============================================================================


@pytest.mark.unit
class TestGlobalTriggers:

    @pytest.mark.parametrize("trigger", ["*", "**", "***"])
    def test_global_catches_anything(self, trigger):
        rule = Rule(trigger, is_global_trigger=True)
        assert find_matching_rule([rule], "mensagem aleatória", "NEW") is rule

    def test_specific_rule_preferred_over_higher_priority_global(self):
        catch_all = Rule("*", is_global_trigger=True, priority=100)
        specific = Rule("plano", priority=0)
        assert find_matching_rule([catch_all, specific], "quero um plano", "NEW") is specific

    def test_global_flag_with_other_text_does_not_match(self):
        rule = Rule("plano", is_global_trigger=True)
        assert find_matching_rule([rule], "plano", "NEW") is None


# ============================================================================
# Filtro de contato
# ============================================================================


@pytest.mark.unit
class TestContactFilter:

    def test_filter_excludes_other_status(self):
        rule = Rule("oi", contact_filter="CLIENT")
        assert find_matching_rule([rule], "oi", "NEW") is None
        assert find_matching_rule([rule], "oi", "CLIENT") is rule

    def test_filter_applies_to_global(self):
        rule = Rule("*", is_global_trigger=True, contact_filter="KNOWN")
        assert find_matching_rule([rule], "oi", "NEW") is None
        assert find_matching_rule([rule], "oi", "KNOWN") is rule


# ============================================================================
# Callbacks
# ============================================================================


@pytest.mark.unit
class TestCallbacks:

    def test_callback_id_parsing(self):
        assert callback_id("__BUTTON__:planos") == "planos"
        assert callback_id("__LIST__:Mensal") == "mensal"
        assert callback_id("planos") is None

    def test_callback_id_stops_at_next_colon(self):
        assert callback_id("__BUTTON__:plano:anual") == "plano"

    def test_button_callback_matches_trigger_exactly(self):
        planos = Rule("planos")
        assert find_matching_rule([planos], "__BUTTON__:planos", "NEW") is planos

    def test_list_callback_matches_trigger_exactly(self):
        mensal = Rule("mensal")
        assert find_matching_rule([mensal], "__LIST__:MENSAL", "NEW") is mensal

    def test_callback_never_falls_back_to_substring_or_global(self):
        rules = [Rule("plano"), Rule("*", is_global_trigger=True)]
        assert find_matching_rule(rules, "__BUTTON__:planos", "NEW") is None

    def test_callback_respects_contact_filter(self):
        rule = Rule("planos", contact_filter="CLIENT")
        assert find_matching_rule([rule], "__BUTTON__:planos", "NEW") is None


# ============================================================================
# Property-based
# ============================================================================

_words = st.sampled_from(["plano", "preço", "oi", "menu", "suporte", "*", "**", "pix", ""])

_rules = st.lists(
    st.builds(
        Rule,
        trigger_text=_words,
        is_global_trigger=st.booleans(),
        contact_filter=st.sampled_from(["ALL", "NEW", "KNOWN", "CLIENT"]),
        priority=st.integers(min_value=-5, max_value=5),
    ),
    max_size=8,
)


@pytest.mark.unit
class TestMatcherProperties:

    @given(
        rules=_rules,
        message=st.text(max_size=30),
        status=st.sampled_from(["NEW", "KNOWN", "CLIENT"]),
    )
    def test_selected_rule_is_one_of_the_inputs(self, rules, message, status):
        selected = find_matching_rule(rules, message, status)
        assert selected is None or any(selected is rule for rule in rules)

    @given(
        rules=_rules,
        message=st.sampled_from(["quero um plano", "qual o preço", "oi", "bom dia", "menu"]),
        status=st.sampled_from(["NEW", "KNOWN", "CLIENT"]),
    )
    def test_non_global_match_beats_global(self, rules, message, status):
        selected = find_matching_rule(rules, message, status)
        lowered = message.lower()
        specific = [
            r for r in rules
            if not r.is_global_trigger
            and r.contact_filter in ("ALL", status)
            and r.trigger_text.strip()
            and r.trigger_text.lower() in lowered
        ]
        if specific:
            assert selected is not None
            assert not selected.is_global_trigger
            assert selected.priority == max(r.priority for r in specific)
