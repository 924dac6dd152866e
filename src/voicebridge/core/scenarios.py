"""Role-play scenarios a conversation can be framed with."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Scenario:
    """A named role-play prompt."""

    key: str
    title: str
    prompt: str


SCENARIOS: dict[str, Scenario] = {
    "tough_customer": Scenario(
        key="tough_customer",
        title="Difficult Customer",
        prompt=(
            "You are an annoyed customer who believes they were overcharged for a service. "
            "You're calling customer support and you're frustrated, but you can be convinced "
            "if the agent is empathetic and offers a reasonable solution. "
            "Be challenging but fair."
        ),
    ),
    "job_interview": Scenario(
        key="job_interview",
        title="Job Interview",
        prompt=(
            "You are an interviewer for an Associate PM role at a tech startup. "
            "Ask relevant questions about product management, prioritization, and "
            "problem-solving. Be professional but thorough in your evaluation."
        ),
    ),
    "sales_objection": Scenario(
        key="sales_objection",
        title="Sales Objection",
        prompt=(
            "You are a potential customer considering a software purchase but you have "
            "concerns about price, implementation time, and whether it fits your needs. "
            "Raise realistic objections that a good salesperson should be able to address."
        ),
    ),
    "performance_review": Scenario(
        key="performance_review",
        title="Performance Review",
        prompt=(
            "You are a manager conducting a performance review with a team member who has "
            "been struggling with deadlines but shows potential. Be constructive but honest "
            "about areas for improvement."
        ),
    ),
}


def get_scenario(key: str | None) -> Scenario | None:
    """Look up a scenario by key. Unknown keys return None."""
    if not key:
        return None
    return SCENARIOS.get(key)


def scenario_message(key: str | None, text: str) -> str:
    """Frame a user message with the scenario prompt, if any."""
    scenario = get_scenario(key)
    if scenario is None:
        return text
    return f"{scenario.prompt}\n\nUser message: {text}"
