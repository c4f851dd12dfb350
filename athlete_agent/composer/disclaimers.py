"""Disclaimers and empathy preambles attached to generated answers."""

from typing import Optional

DISCLAIMER_SEPARATOR = "\n\n---\n\n"

OMBUDS_CONTACT = "the Athlete Ombuds at ombudsman@usathlete.org or 719-866-5000"

GENERAL_DISCLAIMER = (
    "This information is for educational purposes only and does not constitute legal advice. "
    "For personalized guidance, consult the Athlete Ombuds or qualified legal counsel."
)

DISCLAIMERS = {
    "general": GENERAL_DISCLAIMER,
    "team_selection": (
        GENERAL_DISCLAIMER
        + "\n\nSelection procedures differ by sport and event; always check your governing body's "
        "published procedures for the competition in question. If you believe a selection decision "
        f"was wrong, contact {OMBUDS_CONTACT}."
    ),
    "dispute_resolution": (
        GENERAL_DISCLAIMER
        + "\n\nFor help with grievances and Section 9 arbitration, contact "
        f"{OMBUDS_CONTACT}. The Ombuds gives free, confidential and independent advice."
    ),
    "safesport": (
        "If you are in immediate danger, call 911. To report abuse or misconduct in sport, contact the "
        "U.S. Center for SafeSport at https://uscenterforsafesport.org/report-a-concern/ or 833-587-7233. "
        "Reports can be made anonymously.\n\n" + GENERAL_DISCLAIMER
    ),
    "anti_doping": (
        GENERAL_DISCLAIMER
        + "\n\nFor questions about testing, whereabouts or Therapeutic Use Exemptions, contact USADA at "
        "https://www.usada.org or 1-866-601-2632. If you have been notified of a potential anti-doping "
        "rule violation, seek legal counsel immediately."
    ),
    "eligibility": (
        GENERAL_DISCLAIMER
        + "\n\nEligibility rules vary by sport, level and governing body. Contact your governing body "
        f"or {OMBUDS_CONTACT} about your situation."
    ),
    "governance": (
        GENERAL_DISCLAIMER
        + "\n\nFor governance and representation concerns, contact the Team USA Athletes' Commission at "
        "https://www.usopc.org/teamusa-athletes-commission or your governing body's athlete representative."
    ),
    "athlete_rights": (
        GENERAL_DISCLAIMER
        + "\n\nFor questions about athlete representation and the Athlete Bill of Rights, contact the "
        "Team USA Athletes' Commission. For marketing and sponsorship rights, contact "
        f"{OMBUDS_CONTACT}."
    ),
}

MENTAL_HEALTH_RESOURCE = (
    "USOPC Mental Health Support: contact USOPC Athlete Services or the Mental Health Helpline "
    "at 1-888-602-9002 for free, confidential support."
)

EMPATHY_PREAMBLES = {
    "neutral": "",
    "distressed": (
        "I hear you, and what you're feeling is valid. You are not alone in this and support is "
        f"available.\n\n{MENTAL_HEALTH_RESOURCE}\n\nHere's what I can share about your situation:\n\n"
    ),
    "panicked": (
        "I understand this feels overwhelming right now. Take a breath; there are concrete steps "
        "you can take, and I'll walk you through them.\n\n"
    ),
    "fearful": (
        "Retaliation protections exist to keep you safe, and there are confidential ways to get help. "
        "You have the right to speak up without fear of losing your place.\n\n"
    ),
}


def get_disclaimer(domain: Optional[str] = None) -> str:
    """Disclaimer for a topic domain, general disclaimer otherwise."""
    return DISCLAIMERS.get(domain or "general", GENERAL_DISCLAIMER)


def with_disclaimer(answer: str, domain: Optional[str] = None) -> str:
    return f"{answer}{DISCLAIMER_SEPARATOR}{get_disclaimer(domain)}"


def with_empathy(answer: str, emotional_state: Optional[str]) -> str:
    """Prepend the empathy preamble for a non-neutral emotional state."""
    preamble = EMPATHY_PREAMBLES.get(emotional_state or "neutral", "")
    return preamble + answer if preamble else answer
