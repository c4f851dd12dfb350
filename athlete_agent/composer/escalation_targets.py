"""Directory of organizations athletes can be referred to."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from athlete_agent.schemas.agent_state import EscalationInfo

Urgency = Literal["immediate", "standard"]

IMMEDIATE_DOMAINS = frozenset({"safesport", "anti_doping"})
DEFAULT_ESCALATION_DOMAIN = "dispute_resolution"


class EscalationTarget(BaseModel):
    id: str
    organization: str
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_url: Optional[str] = None
    domains: List[str] = Field(default_factory=list)
    urgency_default: Urgency = "standard"
    description: str = ""

    def contact_block(self) -> str:
        """Markdown block listing the verified contact details."""
        lines = [f"### {self.organization}", self.description]
        if self.contact_phone:
            lines.append(f"- Phone: {self.contact_phone}")
        if self.contact_email:
            lines.append(f"- Email: [{self.contact_email}](mailto:{self.contact_email})")
        if self.contact_url:
            lines.append(f"- Website: [{self.organization}]({self.contact_url})")
        return "\n".join(lines)


ESCALATION_TARGETS: List[EscalationTarget] = [
    EscalationTarget(
        id="athlete_ombuds",
        organization="Athlete Ombuds",
        contact_email="ombudsman@usathlete.org",
        contact_phone="719-866-5000",
        contact_url="https://www.usathlete.org",
        domains=["dispute_resolution", "team_selection", "eligibility", "governance", "athlete_rights"],
        description=(
            "Free, confidential and independent advice on disputes, team selection, eligibility and "
            "athlete rights, including how resolution processes work."
        ),
    ),
    EscalationTarget(
        id="safesport_center",
        organization="U.S. Center for SafeSport",
        contact_phone="833-5US-SAFE (833-587-7233)",
        contact_url="https://uscenterforsafesport.org/report-a-concern/",
        domains=["safesport"],
        urgency_default="immediate",
        description=(
            "Exclusive authority for investigating sexual, emotional and physical misconduct, bullying, "
            "hazing and harassment in U.S. Olympic and Paralympic sport. Reports can be anonymous."
        ),
    ),
    EscalationTarget(
        id="usada",
        organization="U.S. Anti-Doping Agency (USADA)",
        contact_phone="1-866-601-2632",
        contact_url="https://www.usada.org",
        domains=["anti_doping"],
        urgency_default="immediate",
        description="Handles testing, Therapeutic Use Exemptions, whereabouts and anti-doping rule violations.",
    ),
    EscalationTarget(
        id="athletes_commission",
        organization="Team USA Athletes' Commission",
        contact_email="teamusa.ac@teamusa-ac.org",
        contact_url="https://www.usopc.org/teamusa-athletes-commission",
        domains=["governance", "athlete_rights"],
        description="Represents athletes within USOPC governance, boards and committees.",
    ),
    EscalationTarget(
        id="cas",
        organization="Court of Arbitration for Sport (CAS)",
        contact_url="https://www.tas-cas.org",
        domains=["dispute_resolution"],
        description=(
            "International arbitration body hearing appeals of sport decisions. Strict filing deadlines "
            "apply, typically 21 days from the decision."
        ),
    ),
    EscalationTarget(
        id="emergency_services",
        organization="Emergency Services",
        contact_phone="911",
        domains=["safesport"],
        urgency_default="immediate",
        description="Call 911 first if anyone is in immediate physical danger, then report to SafeSport.",
    ),
]

FALLBACK_TARGET = ESCALATION_TARGETS[0]


def get_escalation_targets(domain: Optional[str]) -> List[EscalationTarget]:
    """Targets serving ``domain``; the Athlete Ombuds when none match."""
    domain = domain or DEFAULT_ESCALATION_DOMAIN
    targets = [target for target in ESCALATION_TARGETS if domain in target.domains]
    return targets or [FALLBACK_TARGET]


def determine_urgency(domain: Optional[str], has_time_constraint: bool) -> Urgency:
    if has_time_constraint or (domain in IMMEDIATE_DOMAINS):
        return "immediate"
    return get_escalation_targets(domain)[0].urgency_default


def build_escalation_info(domain: Optional[str], reason: str, urgency: Urgency) -> EscalationInfo:
    """Escalation record for the primary target of ``domain``."""
    primary = get_escalation_targets(domain)[0]
    return EscalationInfo(
        target=primary.id,
        organization=primary.organization,
        contact_email=primary.contact_email,
        contact_phone=primary.contact_phone,
        contact_url=primary.contact_url,
        reason=reason,
        urgency=urgency,
    )


def build_referral_message(targets: List[EscalationTarget], urgency: Urgency) -> str:
    """Deterministic referral text used when the model cannot write one."""
    opening = (
        "This sounds urgent. Please reach out to the following as soon as possible:"
        if urgency == "immediate"
        else "Based on what you've described, these organizations can help:"
    )
    blocks = [target.contact_block() for target in targets]
    return "\n\n".join([opening, *blocks])
