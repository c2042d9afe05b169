"""
Round-two negotiation between classification agents.

Agents score a content unit independently (round one). Negotiation then
looks at the scores side by side and at which agent each field leans
towards, and decides whether one agent claims the whole tab (FULL) or
two agents split it by field (PARTIAL). Negotiation is a pure function
of the profile.
"""

from typing import Callable, NamedTuple

from pydantic import BaseModel, Field

from incentive.core.models import (
    AgentScore,
    ContentProfile,
    FieldAffinity,
    FieldProfile,
    NegotiationLogEntry,
    SemanticBinding,
)
from incentive.observability.logger import get_logger

from .agents import get_agent, score_content_unit

logger = get_logger(__name__)

AGENT_ORDER = ("plan", "entity", "target", "transaction")

ABSENCE_BOOST = 0.10
ABSENCE_THRESHOLD = 0.20
CLEAR_WINNER_GAP = 0.25
SPLIT_THRESHOLD = 0.30
CLOSE_CALL_GAP = 0.10
NEUTRAL_AFFINITY = 0.25
SPLIT_SUFFIX = "::split"


class AffinityRule(NamedTuple):
    test: Callable[[FieldProfile], bool]
    affinities: dict[str, float]


FIELD_AFFINITY_RULES = [
    # identifiers: owned by entity, needed by target and transaction as join keys
    AffinityRule(
        lambda f: f.name_signals.looks_like_id,
        {"entity": 0.90, "target": 0.70, "transaction": 0.70, "plan": 0.10},
    ),
    AffinityRule(
        lambda f: f.name_signals.looks_like_name,
        {"entity": 0.90, "target": 0.20, "transaction": 0.10, "plan": 0.10},
    ),
    AffinityRule(
        lambda f: f.name_signals.looks_like_date or f.data_type == "date",
        {"transaction": 0.90, "entity": 0.10, "target": 0.20, "plan": 0.10},
    ),
    AffinityRule(
        lambda f: f.name_signals.looks_like_amount or f.data_type == "currency",
        {"transaction": 0.80, "target": 0.60, "entity": 0.10, "plan": 0.30},
    ),
    AffinityRule(
        lambda f: f.name_signals.looks_like_target,
        {"target": 0.90, "entity": 0.20, "transaction": 0.20, "plan": 0.10},
    ),
    AffinityRule(
        lambda f: f.name_signals.looks_like_rate or f.data_type == "percentage",
        {"plan": 0.80, "target": 0.50, "transaction": 0.20, "entity": 0.10},
    ),
    AffinityRule(
        lambda f: f.data_type == "text" and 0 < f.distinct_count < 20,
        {"entity": 0.60, "transaction": 0.40, "target": 0.30, "plan": 0.20},
    ),
    AffinityRule(
        lambda f: f.data_type == "integer" and f.is_sequential,
        {"entity": 0.70, "target": 0.40, "transaction": 0.40, "plan": 0.10},
    ),
]


class ContentClaim(BaseModel):
    """
    What one agent claims of a content unit.

    Attributes:
        content_unit_id: Claimed unit; the secondary half of a split ends in "::split"
        agent: Claiming agent
        claim_type: FULL (whole tab) or PARTIAL (owned fields only)
        confidence: Claim confidence after negotiation
        fields: Fields owned by this claim (disjoint between the two halves of a split)
        shared_fields: Join keys both halves keep
        semantic_bindings: Roles for owned and shared fields
        reasoning: Why the agent won
        partner_content_unit_id: Other half of a split
    """

    content_unit_id: str
    agent: str
    claim_type: str = "FULL"
    confidence: float
    fields: list[str] = Field(default_factory=list)
    shared_fields: list[str] = Field(default_factory=list)
    semantic_bindings: list[SemanticBinding] = Field(default_factory=list)
    reasoning: str = ""
    partner_content_unit_id: str | None = None


class NegotiationResult(BaseModel):
    content_unit_id: str
    round1_scores: list[AgentScore]
    round2_scores: list[AgentScore]
    field_affinities: list[FieldAffinity]
    claims: list[ContentClaim]
    is_split: bool = False
    log: list[NegotiationLogEntry] = Field(default_factory=list)


class SplitDecision(NamedTuple):
    should_split: bool
    primary_agent: str
    secondary_agent: str | None
    primary_fields: list[str]
    secondary_fields: list[str]
    shared_fields: list[str]
    reasoning: str


def _pct(value: float) -> str:
    return f"{value * 100:.0f}%"


def score_field_affinity(field: FieldProfile) -> dict[str, float]:
    """
    Affinity of every agent for one field.

    Matching rules combine by maximum; a field no rule matches is
    neutral (0.25 for every agent).
    """
    affinities = {agent: 0.0 for agent in AGENT_ORDER}
    matched = False
    for rule in FIELD_AFFINITY_RULES:
        if rule.test(field):
            matched = True
            for agent in AGENT_ORDER:
                affinities[agent] = max(affinities[agent], rule.affinities[agent])
    if not matched:
        affinities = {agent: NEUTRAL_AFFINITY for agent in AGENT_ORDER}
    return affinities


def compute_field_affinities(profile: ContentProfile) -> list[FieldAffinity]:
    result = []
    for field in profile.fields:
        affinities = score_field_affinity(field)
        # ties resolve to the first agent in AGENT_ORDER
        winner = max(AGENT_ORDER, key=lambda agent: affinities[agent])
        result.append(
            FieldAffinity(
                field_name=field.field_name,
                affinities=affinities,
                winner=winner,
                is_shared=field.name_signals.looks_like_id,
            )
        )
    return result


def apply_absence_boost(
    scores: list[AgentScore], log: list[NegotiationLogEntry]
) -> list[AgentScore]:
    """Boost the leading agent when at least two competitors are weak."""
    if len(scores) < 2:
        return scores

    top, others = scores[0], scores[1:]
    weak = sum(1 for s in others if s.confidence < ABSENCE_THRESHOLD)
    if weak < 2:
        return scores

    boosted = min(1.0, round(top.confidence + ABSENCE_BOOST, 4))
    log.append(
        NegotiationLogEntry(
            stage="absence_boost",
            agent=top.agent,
            message=f"{top.agent} boosted {_pct(top.confidence)} -> {_pct(boosted)} ({weak} weak competitors)",
            data={"original": top.confidence, "boosted": boosted, "weak_count": weak},
        )
    )
    top = top.model_copy(
        update={
            "confidence": boosted,
            "reasoning": f"{top.reasoning} (+boost: {weak} weak competitors)",
        }
    )
    return [top, *others]


def analyze_split(
    affinities: list[FieldAffinity],
    scores: list[AgentScore],
    log: list[NegotiationLogEntry],
) -> SplitDecision:
    """
    Decide between a FULL claim and a PARTIAL split.

    A clear winner (gap above 0.25) always takes the whole tab. Otherwise
    the tab is split when the runner-up wins at least 30% of the fields.
    """
    all_fields = [fa.field_name for fa in affinities]
    if len(scores) < 2:
        agent = scores[0].agent if scores else "transaction"
        return SplitDecision(False, agent, None, all_fields, [], [], "Single agent, no split possible")

    top, runner_up = scores[0], scores[1]
    gap = top.confidence - runner_up.confidence

    if gap > CLEAR_WINNER_GAP:
        log.append(
            NegotiationLogEntry(
                stage="split_decision",
                message=f"No split: clear winner {top.agent} (gap {_pct(gap)})",
                data={"gap": round(gap, 4), "top": top.agent, "runner_up": runner_up.agent},
            )
        )
        return SplitDecision(
            False, top.agent, None, all_fields, [], [], f"Clear winner: {top.agent} by {_pct(gap)}"
        )

    fields_by_agent: dict[str, list[str]] = {}
    for fa in affinities:
        fields_by_agent.setdefault(fa.winner, []).append(fa.field_name)
    shared = [fa.field_name for fa in affinities if fa.is_shared]

    runner_up_fields = fields_by_agent.get(runner_up.agent, [])
    ratio = len(runner_up_fields) / len(affinities) if affinities else 0.0

    if ratio >= SPLIT_THRESHOLD:
        primary = [f for f in fields_by_agent.get(top.agent, []) if f not in shared]
        secondary = [
            fa.field_name
            for fa in affinities
            if not fa.is_shared and fa.winner != top.agent
        ]
        log.append(
            NegotiationLogEntry(
                stage="split_decision",
                message=(
                    f"SPLIT: {top.agent} owns {len(primary)} fields, "
                    f"{runner_up.agent} owns {len(secondary)} fields, {len(shared)} shared"
                ),
                data={
                    "primary_agent": top.agent,
                    "primary_count": len(primary),
                    "secondary_agent": runner_up.agent,
                    "secondary_count": len(secondary),
                    "shared_count": len(shared),
                },
            )
        )
        return SplitDecision(
            True,
            top.agent,
            runner_up.agent,
            primary,
            secondary,
            shared,
            f"Mixed content: {top.agent} ({len(primary)} fields) + {runner_up.agent} ({len(secondary)} fields)",
        )

    log.append(
        NegotiationLogEntry(
            stage="split_decision",
            message=(
                f"No split: {runner_up.agent} fields too few "
                f"({len(runner_up_fields)}/{len(affinities)} = {_pct(ratio)} < {_pct(SPLIT_THRESHOLD)})"
            ),
            data={"runner_up_ratio": round(ratio, 4), "runner_up_agent": runner_up.agent},
        )
    )
    return SplitDecision(
        False,
        top.agent,
        None,
        all_fields,
        [],
        [],
        f"{top.agent} wins, runner-up {runner_up.agent} claims too few fields ({_pct(ratio)})",
    )


def partial_bindings(
    profile: ContentProfile, agent_type: str, owned: list[str], shared: list[str]
) -> list[SemanticBinding]:
    """Bindings for one half of a split; identifier fields always bind as entity_identifier."""
    agent = get_agent(agent_type)
    relevant = set(owned) | set(shared)
    bindings = []
    for field in profile.fields:
        if field.field_name not in relevant:
            continue
        if field.name_signals.looks_like_id:
            bindings.append(
                SemanticBinding(
                    source_field=field.field_name,
                    semantic_role="entity_identifier",
                    confidence=0.90,
                    claimed_by=agent_type,
                    platform_type=field.data_type,
                    display_context=f"{field.field_name}: links to entity",
                )
            )
        else:
            bindings.extend(agent.bind_fields(profile, only={field.field_name}))
    return bindings


def _full_claim(profile: ContentProfile, scores: list[AgentScore]) -> ContentClaim:
    winner = scores[0]
    runner_up = scores[1] if len(scores) > 1 else None
    gap = winner.confidence - (runner_up.confidence if runner_up else 0.0)
    reasoning = winner.reasoning
    if runner_up is not None and gap < CLOSE_CALL_GAP:
        reasoning += f" (close call: gap {gap:.2f} with {runner_up.agent})"
    return ContentClaim(
        content_unit_id=profile.content_unit_id,
        agent=winner.agent,
        claim_type="FULL",
        confidence=winner.confidence,
        fields=[f.field_name for f in profile.fields],
        semantic_bindings=get_agent(winner.agent).bind_fields(profile),
        reasoning=reasoning,
    )


def _partial_claims(
    profile: ContentProfile, scores: list[AgentScore], split: SplitDecision
) -> list[ContentClaim]:
    total = len(profile.fields) or 1
    confidence = {s.agent: s.confidence for s in scores}
    primary_id = profile.content_unit_id
    secondary_id = f"{profile.content_unit_id}{SPLIT_SUFFIX}"

    claims = []
    for unit_id, partner, agent, owned in (
        (primary_id, secondary_id, split.primary_agent, split.primary_fields),
        (secondary_id, primary_id, split.secondary_agent, split.secondary_fields),
    ):
        share = (len(owned) + len(split.shared_fields)) / total
        claims.append(
            ContentClaim(
                content_unit_id=unit_id,
                agent=agent,
                claim_type="PARTIAL",
                confidence=round(confidence.get(agent, 0.0) * share, 4),
                fields=list(owned),
                shared_fields=list(split.shared_fields),
                semantic_bindings=partial_bindings(profile, agent, owned, split.shared_fields),
                reasoning=f"{agent}: owns {len(owned)} fields (PARTIAL)",
                partner_content_unit_id=partner,
            )
        )
    return claims


def negotiate(profile: ContentProfile) -> NegotiationResult:
    """
    Run both negotiation rounds for one content unit.

    Args:
        profile: Profiled content unit

    Returns:
        NegotiationResult with one FULL claim or two PARTIAL claims
    """
    log: list[NegotiationLogEntry] = []

    round1 = score_content_unit(profile)
    log.append(
        NegotiationLogEntry(
            stage="round1",
            message="Round 1: " + ", ".join(f"{s.agent}={_pct(s.confidence)}" for s in round1),
            data={s.agent: s.confidence for s in round1},
        )
    )

    boosted = apply_absence_boost(round1, log)

    affinities = compute_field_affinities(profile)
    wins: dict[str, int] = {}
    for fa in affinities:
        wins[fa.winner] = wins.get(fa.winner, 0) + 1
    log.append(
        NegotiationLogEntry(
            stage="field_analysis",
            message="Field affinities: " + ", ".join(f"{a}={n}" for a, n in wins.items()),
            data=dict(wins),
        )
    )

    split = analyze_split(affinities, boosted, log)

    if split.should_split and split.secondary_agent:
        claims = _partial_claims(profile, boosted, split)
        log.append(
            NegotiationLogEntry(
                stage="round2",
                message=(
                    f"PARTIAL: {split.primary_agent} ({len(split.primary_fields)} fields) + "
                    f"{split.secondary_agent} ({len(split.secondary_fields)} fields), "
                    f"shared: [{', '.join(split.shared_fields)}]"
                ),
            )
        )
    else:
        claims = [_full_claim(profile, boosted)]
        log.append(
            NegotiationLogEntry(
                stage="round2",
                agent=claims[0].agent,
                message=f"FULL: {claims[0].agent} wins at {_pct(claims[0].confidence)}",
            )
        )

    total = len(affinities)
    round2 = []
    for score in boosted:
        won = wins.get(score.agent, 0)
        if total and won:
            score = score.model_copy(
                update={"reasoning": f"{score.reasoning} | {won}/{total} fields ({_pct(won / total)})"}
            )
        round2.append(score)

    logger.debug(
        f"Negotiated {profile.content_unit_id}: "
        + ", ".join(f"{c.agent}/{c.claim_type}" for c in claims)
    )

    return NegotiationResult(
        content_unit_id=profile.content_unit_id,
        round1_scores=round1,
        round2_scores=round2,
        field_affinities=affinities,
        claims=claims,
        is_split=split.should_split,
        log=log,
    )
