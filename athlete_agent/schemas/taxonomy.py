"""Fixed vocabularies shared by the classifier, planner and retriever."""

from __future__ import annotations

from typing import FrozenSet, Literal, Optional, Tuple, get_args

TopicDomain = Literal[
    "team_selection",
    "dispute_resolution",
    "safesport",
    "anti_doping",
    "eligibility",
    "governance",
    "athlete_rights",
]

QueryIntent = Literal["factual", "procedural", "deadline", "escalation", "general"]

EmotionalState = Literal["neutral", "distressed", "panicked", "fearful"]

TOPIC_DOMAINS: Tuple[str, ...] = get_args(TopicDomain)
QUERY_INTENTS: Tuple[str, ...] = get_args(QueryIntent)
EMOTIONAL_STATES: Tuple[str, ...] = get_args(EmotionalState)

# Most to least authoritative.
AUTHORITY_LEVELS: Tuple[str, ...] = (
    "law",
    "international_rule",
    "usopc_governance",
    "usopc_policy_procedure",
    "independent_office",
    "anti_doping_national",
    "ngb_policy_procedure",
    "games_event_specific",
    "educational_guidance",
)

DOMAIN_LABELS = {
    "team_selection": "Team Selection",
    "dispute_resolution": "Dispute Resolution",
    "safesport": "SafeSport",
    "anti_doping": "Anti-Doping",
    "eligibility": "Eligibility",
    "governance": "Governance",
    "athlete_rights": "Athlete Rights",
}

# National governing bodies and the USOPC itself.
DEFAULT_ORG_IDS: FrozenSet[str] = frozenset(
    {
        "usopc",
        "us_biathlon",
        "us_equestrian",
        "us_figure_skating",
        "us_rowing",
        "us_sailing",
        "us_ski_snowboard",
        "us_soccer",
        "us_speedskating",
        "usa_archery",
        "usa_artistic_swimming",
        "usa_badminton",
        "usa_baseball",
        "usa_basketball",
        "usa_bobsled_skeleton",
        "usa_boxing",
        "usa_canoe_kayak",
        "usa_climbing",
        "usa_curling",
        "usa_cycling",
        "usa_diving",
        "usa_fencing",
        "usa_field_hockey",
        "usa_golf",
        "usa_gymnastics",
        "usa_hockey",
        "usa_judo",
        "usa_luge",
        "usa_modern_pentathlon",
        "usa_rugby",
        "usa_shooting",
        "usa_skateboarding",
        "usa_softball",
        "usa_surfing",
        "usa_swimming",
        "usa_table_tennis",
        "usa_taekwondo",
        "usa_team_handball",
        "usa_tennis",
        "usa_track_field",
        "usa_triathlon",
        "usa_volleyball",
        "usa_water_polo",
        "usa_weightlifting",
        "usa_wrestling",
    }
)


def normalize_domain(value: object) -> Optional[str]:
    """Return ``value`` if it is a known topic domain, else None."""
    return value if isinstance(value, str) and value in TOPIC_DOMAINS else None


def normalize_intent(value: object) -> Optional[str]:
    """Return ``value`` if it is a known query intent, else None."""
    return value if isinstance(value, str) and value in QUERY_INTENTS else None


def filter_org_ids(values: object, known_org_ids: FrozenSet[str]) -> Tuple[list[str], list[str]]:
    """Split raw organization ids into (recognized, rejected), preserving order.

    Ids are compared lower-cased; duplicates are dropped.
    """
    if not isinstance(values, list):
        return [], []
    recognized: list[str] = []
    rejected: list[str] = []
    for value in values:
        if not isinstance(value, str):
            rejected.append(repr(value))
            continue
        org_id = value.strip().lower()
        if org_id in known_org_ids:
            if org_id not in recognized:
                recognized.append(org_id)
        else:
            rejected.append(value)
    return recognized, rejected
