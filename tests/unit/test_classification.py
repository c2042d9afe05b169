"""
Unit tests for content profiling, agent scoring and negotiation.
"""

import pytest

from incentive.core.classification import (
    AGENT_REGISTRY,
    detect_field_type,
    generate_content_profile,
    get_agent,
    header_contains,
    negotiate,
    requires_human_review,
    score_content_unit,
)
from incentive.core.classification.negotiation import (
    analyze_split,
    apply_absence_boost,
    score_field_affinity,
)
from incentive.core.classification.profile import ID_SIGNALS, NAME_SIGNALS
from incentive.core.models import AgentScore, FieldAffinity, FieldProfile, NameSignals


def _score(agent: str, confidence: float) -> AgentScore:
    return AgentScore(agent=agent, confidence=confidence, reasoning=f"{agent} agent")


def _affinity(name: str, winner: str, shared: bool = False) -> FieldAffinity:
    return FieldAffinity(field_name=name, affinities={winner: 0.9}, winner=winner, is_shared=shared)


class TestHeaderSignals:
    """Tests for header_contains"""

    @pytest.mark.parametrize("header", ["employee_id", "EmployeeID", "No_Tienda", "Store Code", "ID"])
    def test_identifier_headers(self, header):
        """Test identifier signals, short ones as whole tokens"""
        assert header_contains(header, ID_SIGNALS)

    @pytest.mark.parametrize("header", ["nombre", "paid_amount", "annotation", "video"])
    def test_short_signals_do_not_match_inside_words(self, header):
        """Test 'no' and 'id' inside longer words are not identifiers"""
        assert not header_contains(header, ID_SIGNALS)

    def test_long_signals_match_substrings(self):
        """Test longer signals match anywhere in the header"""
        assert header_contains("Nombre Completo", NAME_SIGNALS)
        assert header_contains("displayName", NAME_SIGNALS)


class TestDetectFieldType:
    """Tests for detect_field_type"""

    @pytest.mark.parametrize("values,header,expected", [
        ([10, 20, 30], "count", "integer"),
        ([1.5, 2.25, 3.75], "score", "decimal"),
        ([1250.55, 980.25, 4410.15], "x", "currency"),
        ([1.5, 2.5], "sales_amount", "currency"),
        ([0.1, 0.5, 0.9], "x", "percentage"),
        ([45, 60], "commission_rate", "percentage"),
        (["80%", "100%", "> 120%"], "x", "percentage"),
        (["2024-01-05", "2024-02-10"], "x", "date"),
        (["yes", "no", "yes"], "active", "boolean"),
        (["North", "South"], "region", "text"),
        (["a", 1, "b", 2], "x", "mixed"),
        ([None, "", None], "x", "text"),
    ])
    def test_types(self, values, header, expected):
        """Test each detectable type"""
        assert detect_field_type(values, header) == expected


class TestContentProfile:
    """Tests for generate_content_profile"""

    def test_roster_profile(self, roster_rows):
        """Test a roster's tab-level signals"""
        profile = generate_content_profile("Plantilla", 0, "roster.xlsx", roster_rows)

        assert profile.content_unit_id == "roster.xlsx::Plantilla::0"
        assert profile.row_count == 60
        assert profile.row_count_category == "moderate"
        assert profile.header_quality == "clean"
        assert profile.has_entity_identifier
        assert profile.has_name_field
        assert profile.has_license_field
        assert not profile.has_date_column
        assert profile.categorical_text_fields == 3
        assert profile.field("employee_id").is_sequential

    def test_plan_profile(self, plan_rows):
        """Test a sparse rule table with generated headers"""
        profile = generate_content_profile("Reglas", 1, "plan.xlsx", plan_rows)

        assert profile.header_quality == "auto_generated"
        assert profile.sparsity == pytest.approx(5 / 12)
        assert profile.row_count_category == "reference"
        assert profile.has_percentage_values
        assert not profile.has_entity_identifier
        assert profile.field("__EMPTY_1").data_type == "percentage"

    def test_transaction_profile(self, transaction_rows):
        """Test dated, monetary, high-volume data"""
        profile = generate_content_profile("Ventas", 0, "ventas.xlsx", transaction_rows)

        assert profile.row_count_category == "transactional"
        assert profile.has_date_column
        assert profile.currency_columns == 1
        assert profile.field("date").data_type == "date"

    def test_explicit_column_order(self):
        """Test columns default to first-seen order across rows"""
        profile = generate_content_profile("t", 0, "f.xlsx", [{"a": 1}, {"b": 2, "a": 3}])

        assert [f.field_name for f in profile.fields] == ["a", "b"]
        assert profile.field("b").null_rate == 0.5

    def test_empty_tab(self):
        """Test an empty tab profiles without dividing by zero"""
        profile = generate_content_profile("t", 0, "f.xlsx", [])

        assert profile.row_count == 0
        assert profile.sparsity == 0.0
        assert profile.fields == []


class TestAgents:
    """Tests for agent scoring"""

    @pytest.mark.parametrize("fixture,winner,confidence", [
        ("roster_rows", "entity", 0.85),
        ("transaction_rows", "transaction", 0.80),
        ("target_rows", "target", 0.75),
        ("plan_rows", "plan", 0.90),
    ])
    def test_winning_agent(self, request, fixture, winner, confidence):
        """Test each kind of tab is won by its agent before negotiation"""
        rows = request.getfixturevalue(fixture)
        profile = generate_content_profile("tab", 0, "file.xlsx", rows)

        scores = score_content_unit(profile)

        assert scores[0].agent == winner
        assert scores[0].confidence == pytest.approx(confidence)
        assert [s.confidence for s in scores] == sorted((s.confidence for s in scores), reverse=True)

    def test_scores_clamped_and_reasoned(self, plan_rows):
        """Test negative totals clamp to 0 and reasoning quotes the top signals"""
        profile = generate_content_profile("tab", 0, "file.xlsx", plan_rows)

        scores = {s.agent: s for s in score_content_unit(profile)}

        assert scores["transaction"].confidence == 0.0
        assert scores["transaction"].reasoning == "transaction agent: no positive signals"
        assert scores["plan"].reasoning.startswith("plan agent: headers contain __EMPTY pattern")

    def test_entity_bindings(self, roster_rows):
        """Test the entity agent's field roles"""
        profile = generate_content_profile("tab", 0, "file.xlsx", roster_rows)

        roles = {b.source_field: b.semantic_role for b in get_agent("entity").bind_fields(profile)}

        assert roles == {
            "employee_id": "entity_identifier",
            "name": "entity_name",
            "role": "entity_attribute",
            "region": "entity_attribute",
            "product_licenses": "entity_license",
        }

    def test_registry(self):
        """Test every agent is registered and unknown types are rejected"""
        assert set(AGENT_REGISTRY) == {"plan", "entity", "target", "transaction"}
        with pytest.raises(ValueError):
            get_agent("payroll")

    @pytest.mark.parametrize("top,second,expected", [
        (0.90, 0.30, False),
        (0.45, 0.10, True),
        (0.70, 0.65, True),
    ])
    def test_requires_human_review(self, top, second, expected):
        """Test weak winners and close races need review"""
        scores = [_score("entity", top), _score("target", second)]

        assert requires_human_review(scores) is expected


class TestFieldAffinity:
    """Tests for score_field_affinity"""

    def test_identifier_field(self):
        """Test identifiers lean to entity but matter to target and transaction"""
        field = FieldProfile(
            field_name="employee_id", field_index=0, data_type="integer",
            name_signals=NameSignals(looks_like_id=True),
        )

        affinities = score_field_affinity(field)

        assert affinities == {"plan": 0.10, "entity": 0.90, "target": 0.70, "transaction": 0.70}

    def test_rules_combine_by_maximum(self):
        """Test a field matching several rules keeps each agent's best affinity"""
        field = FieldProfile(
            field_name="sales_amount", field_index=0, data_type="percentage",
            name_signals=NameSignals(looks_like_amount=True),
        )

        affinities = score_field_affinity(field)

        assert affinities["transaction"] == 0.80
        assert affinities["plan"] == 0.80
        assert affinities["target"] == 0.60

    def test_unmatched_field_is_neutral(self):
        """Test a field no rule matches gets 0.25 for every agent"""
        field = FieldProfile(field_name="x", field_index=0, data_type="boolean")

        assert set(score_field_affinity(field).values()) == {0.25}


class TestAbsenceBoost:
    """Tests for apply_absence_boost"""

    def test_boost_with_two_weak_competitors(self):
        """Test the leader gains 0.10 and the boost is logged"""
        log = []
        scores = [_score("entity", 0.85), _score("target", 0.35), _score("plan", 0.05), _score("transaction", 0.0)]

        boosted = apply_absence_boost(scores, log)

        assert boosted[0].confidence == pytest.approx(0.95)
        assert "+boost: 2 weak competitors" in boosted[0].reasoning
        assert log[0].stage == "absence_boost"
        assert scores[0].confidence == 0.85

    def test_boost_capped_at_one(self):
        """Test boosted confidence never exceeds 1.0"""
        scores = [_score("plan", 0.95), _score("target", 0.1), _score("entity", 0.1)]

        assert apply_absence_boost(scores, [])[0].confidence == 1.0

    def test_no_boost_with_one_weak_competitor(self):
        """Test a single weak competitor leaves scores unchanged"""
        scores = [_score("entity", 0.6), _score("target", 0.5), _score("plan", 0.1)]

        assert apply_absence_boost(scores, []) == scores


class TestAnalyzeSplit:
    """Tests for analyze_split"""

    def test_clear_winner_takes_all(self):
        """Test a gap above 0.25 never splits"""
        affinities = [_affinity("a", "entity"), _affinity("b", "target"), _affinity("c", "target")]

        decision = analyze_split(affinities, [_score("entity", 0.9), _score("target", 0.6)], [])

        assert not decision.should_split
        assert decision.primary_agent == "entity"
        assert decision.primary_fields == ["a", "b", "c"]

    def test_split_with_shared_identifier(self):
        """Test owned fields are disjoint and the identifier is shared"""
        log = []
        affinities = [
            _affinity("employee_id", "entity", shared=True),
            _affinity("name", "entity"),
            _affinity("sales_goal", "target"),
            _affinity("units_goal", "target"),
            _affinity("notes", "plan"),
        ]

        decision = analyze_split(affinities, [_score("target", 0.8), _score("entity", 0.7)], log)

        assert decision.should_split
        assert decision.primary_agent == "target"
        assert decision.secondary_agent == "entity"
        assert decision.primary_fields == ["sales_goal", "units_goal"]
        assert decision.secondary_fields == ["name", "notes"]
        assert decision.shared_fields == ["employee_id"]
        assert log[-1].message.startswith("SPLIT")

    def test_runner_up_with_too_few_fields(self):
        """Test a runner-up winning under 30% of the fields does not split"""
        affinities = [_affinity(f"f{i}", "transaction") for i in range(8)] + [_affinity("name", "entity")]

        decision = analyze_split(affinities, [_score("transaction", 0.7), _score("entity", 0.6)], [])

        assert not decision.should_split
        assert "too few" in decision.reasoning

    def test_single_agent(self):
        """Test one score cannot split"""
        decision = analyze_split([_affinity("a", "plan")], [_score("plan", 0.4)], [])

        assert not decision.should_split
        assert decision.primary_agent == "plan"


class TestNegotiate:
    """Tests for negotiate"""

    @pytest.mark.parametrize("fixture,winner,confidence", [
        ("roster_rows", "entity", 0.95),
        ("transaction_rows", "transaction", 0.90),
        ("target_rows", "target", 0.85),
        ("plan_rows", "plan", 1.0),
    ])
    def test_full_claims(self, request, fixture, winner, confidence):
        """Test clear tabs produce one boosted FULL claim over every field"""
        rows = request.getfixturevalue(fixture)
        profile = generate_content_profile("tab", 0, "file.xlsx", rows)

        result = negotiate(profile)

        assert not result.is_split
        assert len(result.claims) == 1
        claim = result.claims[0]
        assert claim.agent == winner
        assert claim.claim_type == "FULL"
        assert claim.confidence == pytest.approx(confidence)
        assert claim.fields == [f.field_name for f in profile.fields]
        assert [e.stage for e in result.log][:2] == ["round1", "absence_boost"]
        assert result.log[-1].stage == "round2"

    def test_mixed_tab_splits(self, team_goal_rows):
        """Test roster and goal columns in one tab become two PARTIAL claims"""
        profile = generate_content_profile("Equipo", 0, "metas.xlsx", team_goal_rows)

        result = negotiate(profile)

        assert result.is_split
        target, entity = result.claims
        assert (target.agent, entity.agent) == ("target", "entity")
        assert target.content_unit_id == "metas.xlsx::Equipo::0"
        assert entity.content_unit_id == "metas.xlsx::Equipo::0::split"
        assert target.partner_content_unit_id == entity.content_unit_id
        assert target.fields == ["sales_goal", "new_customers_goal"]
        assert entity.fields == ["name", "role", "region", "product_licenses"]
        assert target.shared_fields == entity.shared_fields == ["employee_id"]
        assert not set(target.fields) & set(entity.fields)
        # boosted score scaled by the share of fields the claim covers
        assert target.confidence == pytest.approx(0.85 * 3 / 7, abs=1e-4)
        assert entity.confidence == pytest.approx(0.70 * 5 / 7, abs=1e-4)

    def test_split_bindings_keep_identifier(self, team_goal_rows):
        """Test both halves bind the shared identifier as entity_identifier"""
        result = negotiate(generate_content_profile("Equipo", 0, "metas.xlsx", team_goal_rows))

        target_roles = {b.source_field: b.semantic_role for b in result.claims[0].semantic_bindings}
        entity_roles = {b.source_field: b.semantic_role for b in result.claims[1].semantic_bindings}

        assert target_roles == {
            "employee_id": "entity_identifier",
            "sales_goal": "performance_target",
            "new_customers_goal": "performance_target",
        }
        assert entity_roles["employee_id"] == "entity_identifier"
        assert entity_roles["name"] == "entity_name"
        assert entity_roles["product_licenses"] == "entity_license"

    def test_round2_reasoning_counts_fields(self, roster_rows):
        """Test round-two reasoning reports the share of fields each agent won"""
        result = negotiate(generate_content_profile("tab", 0, "f.xlsx", roster_rows))

        entity = next(s for s in result.round2_scores if s.agent == "entity")
        assert entity.reasoning.endswith("| 5/5 fields (100%)")
