"""Per-module prompt templates for the analysis step.

Each template is the answer block followed by a module-specific request for
a JSON object. Unknown slugs fall back to a generic summary request.
"""
from __future__ import annotations

from typing import Callable, Iterable, Optional

from planner.models import CAPABILITIES_SLUG, FINAL_REPORT_SLUG, STRATEGY_SLUG

NO_RESPONSES = "No responses provided yet."

# modules whose prompt takes the selected practice as extra context
PRACTICE_CONTEXT_SLUGS = frozenset({CAPABILITIES_SLUG, STRATEGY_SLUG})


def clean_answers(answers: Iterable[Optional[str]]) -> list[str]:
    out = [a.strip() for a in answers if a and a.strip()]
    return out or [NO_RESPONSES]


def _answers_block(answers: list[str], intro: str = "The user provided these answers:") -> str:
    return "You are an AI. " + intro + "\n" + "\n\n".join(answers) + "\n\n"


def _capabilities(answers: list[str], practice: Optional[str]) -> str:
    if practice:
        return (
            _answers_block(answers)
            + f'The user has selected "{practice}" as their consulting practice.\n\n'
            "Generate a JSON with:\n"
            '"practices": an array with just the selected practice\n'
            f'"niches": an array of 5 specific niche options within "{practice}" '
            "that the user may want to consider\n\n"
            "Example format:\n"
            "{\n"
            f'"practices": ["{practice}"],\n'
            '"niches": ["Niche 1", "Niche 2", "Niche 3", "Niche 4", "Niche 5"]\n'
            "}\n"
        )
    return (
        _answers_block(answers)
        + "Generate a JSON with:\n"
        '"practices": an array of exactly 5 consulting practice types that best suit their capabilities\n'
        '"niches": an empty array for now (we\'ll fill this later when they select a practice)\n\n'
        "Example format:\n"
        "{\n"
        '"practices": ["Practice 1", "Practice 2", "Practice 3", "Practice 4", "Practice 5"],\n'
        '"niches": []\n'
        "}\n"
    )


def _strategy(answers: list[str], practice: Optional[str]) -> str:
    context = f'The user\'s chosen consulting practice is "{practice}".\n\n' if practice else ""
    return (
        _answers_block(answers)
        + context
        + "Generate a JSON with:\n"
        "{\n"
        '"valuePropositions": ["Value Proposition #1", "... exactly 5 items"],\n'
        '"targetIndustries": ["Industry #1", "... exactly 5 items"],\n'
        '"idealClients": ["Detailed Ideal Client #1 - include characteristics, challenges, '
        'and decision-making profile", "... exactly 5 items"]\n'
        "}\n\n"
        "Ensure there are exactly 5 items in each array, describing each in detail.\n"
    )


def _opportunity_map(answers: list[str], practice: Optional[str]) -> str:
    return (
        _answers_block(answers)
        + "Generate a JSON object with two arrays:\n"
        "{\n"
        '"opportunityMapServices": [\n'
        '  {"serviceName": "Service 1", "topIndustries": ["Industry A", "..."], '
        '"whyGoodTarget": ["Reason 1", "..."], "risks": ["Potential Risk 1", "..."]}\n'
        "],\n"
        '"opportunityMapIndustries": [\n'
        '  {"industryName": "Industry A", "services": ["Service 1", "..."], '
        '"whyServiceFits": ["Reason 1", "..."], "risks": ["Risk 1", "..."]}\n'
        "]\n"
        "}\n\n"
        "Each array should have at least 2 objects, each with top five industries or services, "
        "reasons, and risks, based on the user's responses.\n"
    )


def _service_offering(answers: list[str], practice: Optional[str]) -> str:
    return (
        _answers_block(answers)
        + 'Generate a JSON object with a "serviceTiers" array. Exactly 3 items (Basic, Mid-Level, Premium).\n'
        'Each item in "serviceTiers" must have:\n'
        "{\n"
        '  "name": "Basic" (or "Mid-Level" or "Premium"),\n'
        '  "features": "The key features and benefits of this tier",\n'
        '  "outcomes": "The client outcomes this tier should produce",\n'
        '  "intangibleBenefits": "Any intangible or non-obvious benefits for this tier"\n'
        "}\n"
    )


def _positioning(answers: list[str], practice: Optional[str]) -> str:
    return (
        _answers_block(answers)
        + "Generate a JSON object with the following structure:\n"
        "{\n"
        '"topNiches": [{"niche": "Niche 1", "positioning": "How to stand out in Niche 1"}, "... exactly 5"],\n'
        '"risksObstacles": ["Risk or obstacle #1", "... 5 items"],\n'
        '"strategies": ["Actionable Strategy #1 (very specific steps)", "... 5 items"],\n'
        '"opportunityMatrix": [\n'
        '  {"service": "Service name 1", "segment": "Potential client segment", '
        '"demand": "High/Medium/Low", "easeOfEntry": "High/Medium/Low", '
        '"profitability": "High/Medium/Low", "risks": ["Risk A"], '
        '"recommendedStrategies": ["Strategy A"]}\n'
        "]\n"
        "}\n\n"
        "Ensure exactly 5 top niches.\n"
        '"risksObstacles" should reflect obstacles or limitations the user might face.\n'
        '"strategies" must be extremely specific and actionable.\n'
        '"opportunityMatrix" shows how each service intersects with potential client segments.\n'
    )


PRICING_FIELDS = {
    "marketRates": "Typical market rates for each service you plan to provide",
    "justification": "The justification for the pricing and Return-On-Investment",
    "benefits": "The transformational benefits offered and how they differ from competitors",
    "testimonials": "Testimonials or quantitative success data that reinforce the premium value",
    "pricingAdjustments": "How pricing adjusts for different project scopes or client budgets",
    "futurePricing": "Package add-ons, retainer upgrades, or future services that may change pricing",
    "revenueTargets": "Revenue targets or client acquisition goals behind baseline pricing",
    "constraints": "Constraints or cost structures that influence the pricing strategy",
    "milestones": "Milestones that would trigger a pricing change",
    "tracking": "How performance and profitability are tracked",
}


def _pricing(answers: list[str], practice: Optional[str]) -> str:
    fields = ",\n".join(f'"{k}": "{v}"' for k, v in PRICING_FIELDS.items())
    return (
        _answers_block(
            answers,
            intro='The user has completed the "Pricing Strategy Planner" module with these answers:',
        )
        + "Generate a JSON object with the following fields based on the user's responses:\n"
        "{\n" + fields + "\n}\n\n"
        "Ensure each field is a detailed string response tailored to the user's answers.\n"
    )


FINAL_REPORT_SECTIONS = {
    "executiveSummary": ["overview", "keyStrategies", "vision"],
    "marketAnalysis": ["targetMarket", "competitiveLandscape", "opportunities", "threats"],
    "serviceStrategy": ["coreServices", "valueProposition", "deliveryModel", "differentiators"],
    "pricingModel": ["structure", "rates", "packages", "flexibility"],
    "implementationPlan": ["phases", "timeline", "milestones", "resources"],
    "riskAssessment": ["businessRisks", "mitigationStrategies", "contingencyPlans"],
    "successMetrics": ["kpis", "targets", "evaluationMethod", "reviewProcess"],
}


def _section(name: str, keys: list[str]) -> str:
    inner = ", ".join(f'"{k}": "..."' for k in keys)
    return f'"{name}": {{{inner}}}'


def _final_report(answers: list[str], practice: Optional[str]) -> str:
    sections = ",\n".join(_section(name, keys) for name, keys in FINAL_REPORT_SECTIONS.items())
    return (
        _answers_block(
            answers,
            intro="The user has completed all modules, and these are their answers from all previous modules:",
        )
        + "Generate a comprehensive JSON final report that synthesizes all previous responses "
        "into a cohesive consulting strategy. Include the following sections:\n\n"
        + sections
        + "\n\nTailor each section to the user's responses, providing detailed and actionable insights.\n"
    )


def _generic(answers: list[str], slug: Optional[str]) -> str:
    return (
        _answers_block(answers)
        + f'Generate a JSON analysis based on the responses for the module "{slug or "unknown"}".\n'
        "Provide relevant insights in a structured format appropriate to the module's purpose.\n"
        "If no specific module is identified, provide a general summary of the responses.\n"
    )


TEMPLATES: dict[str, Callable[[list[str], Optional[str]], str]] = {
    CAPABILITIES_SLUG: _capabilities,
    STRATEGY_SLUG: _strategy,
    "opportunity-map": _opportunity_map,
    "service-offering": _service_offering,
    "positioning": _positioning,
    "pricing": _pricing,
    FINAL_REPORT_SLUG: _final_report,
}


def build_prompt(slug: Optional[str], answers: Iterable[Optional[str]], practice: Optional[str] = None) -> str:
    cleaned = clean_answers(answers)
    template = TEMPLATES.get(slug or "")
    if template is None:
        return _generic(cleaned, slug)
    return template(cleaned, practice if slug in PRACTICE_CONTEXT_SLUGS else None)


__all__ = ["build_prompt", "clean_answers", "NO_RESPONSES", "PRACTICE_CONTEXT_SLUGS", "TEMPLATES"]
