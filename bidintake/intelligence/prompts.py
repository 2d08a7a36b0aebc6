"""Instruction schemas sent to the extraction capability.

One prompt per document family for full analysis, plus the metadata,
categorization and package-grouping schemas.
"""

from __future__ import annotations

from bidintake.models import DocumentType, OpportunityType, RiskLevel, WorkCategory

_JSON_ONLY = "Respond with a single valid JSON object and nothing else."

_FINDING_SCHEMA = """{
      "type": "string",
      "title": "Brief title",
      "description": "Detailed description",
      "severity": "LOW|MEDIUM|HIGH|CRITICAL",
      "page_reference": "Page X or null"
    }"""

_COST_ADJUSTMENT_SCHEMA = """{
      "factor_type": "OVERALL|CONTINGENCY|LABOR|EQUIPMENT|MATERIAL|SUBCONTRACTOR",
      "percentage_modifier": 10,
      "condition_description": "What drives the adjustment",
      "condition_category": "SCHEDULE|LIQUIDATED_DAMAGES|SEASONAL_RESTRICTION|HAZMAT|GEOTECHNICAL|OTHER",
      "affected_item_codes": ["*"],
      "affected_work_categories": null,
      "source_text": "Quoted text from the document",
      "confidence_score": 0.8
    }"""


def _analysis_prompt(role: str, focus: list[str], category: str, extracted_fields: str) -> str:
    focus_lines = "\n".join(f"{i}. {line}" for i, line in enumerate(focus, start=1))
    return f"""You are {role} reviewing documents for a highway construction bid.

Analyze the document and extract:
{focus_lines}

Where a finding affects bid pricing, estimate a cost adjustment percentage.

Return JSON with this structure:
{{
  "summary": "2-3 sentence summary",
  "document_category": "{category}",
  "key_findings": [
    {_FINDING_SCHEMA}
  ],
  "extracted_data": {extracted_fields},
  "cost_adjustments": [
    {_COST_ADJUSTMENT_SCHEMA}
  ],
  "confidence_score": 0-100
}}

{_JSON_ONLY}"""


PROPOSAL_PROMPT = _analysis_prompt(
    "an expert bid analyst for state DOT proposals",
    [
        "Project identification (state project number, federal aid number, county, route)",
        "Key dates (letting date, pre-bid meeting, completion deadline)",
        "Contract requirements (working days, liquidated damages, DBE goal)",
        "Special provisions or unusual requirements",
        "Risks for bidding and items needing clarification",
    ],
    "BID_PROPOSAL",
    """{
    "state_project_number": "string or null",
    "federal_aid_number": "string or null",
    "county": "string or null",
    "route": "string or null",
    "letting_date": "YYYY-MM-DD or null",
    "working_days": "number or null",
    "liquidated_damages_per_day": "number or null",
    "dbe_goal_percentage": "number or null",
    "engineers_estimate": "number or null",
    "is_federal_aid": "boolean",
    "special_provisions": ["notable provisions"]
  }""",
)

ENVIRONMENTAL_PROMPT = _analysis_prompt(
    "an environmental compliance analyst",
    [
        "Wetland boundaries and restrictions",
        "Endangered species considerations",
        "Stream impacts and mitigation requirements",
        "Seasonal timing restrictions",
        "Permit requirements and monitoring commitments",
    ],
    "ENVIRONMENTAL",
    """{
    "wetland_acres": "number or null",
    "stream_linear_feet": "number or null",
    "endangered_species": ["species"],
    "timing_restrictions": [{"restriction": "text", "start_date": "MM-DD", "end_date": "MM-DD"}],
    "permits_required": ["permit types"],
    "mitigation_requirements": ["requirements"]
  }""",
)

HAZMAT_PROMPT = _analysis_prompt(
    "a hazardous materials analyst",
    [
        "Asbestos-containing materials with locations and quantities",
        "Lead-based paint locations",
        "Other hazardous materials identified",
        "Required abatement procedures and disposal requirements",
    ],
    "HAZMAT",
    """{
    "acm_locations": [{"location": "text", "material": "text", "quantity": "text"}],
    "lead_paint_locations": ["locations"],
    "other_hazards": ["hazards"],
    "abatement_required": "boolean",
    "disposal_requirements": ["requirements"]
  }""",
)

GEOTECHNICAL_PROMPT = _analysis_prompt(
    "a geotechnical engineer",
    [
        "Soil and rock conditions from borings",
        "Groundwater elevations",
        "Foundation recommendations",
        "Rock excavation or unsuitable material quantities",
    ],
    "GEOTECHNICAL",
    """{
    "boring_count": "number or null",
    "groundwater_depth_ft": "number or null",
    "rock_encountered": "boolean",
    "foundation_type": "string or null",
    "unsuitable_material": "string or null"
  }""",
)

DEFAULT_PROMPT = _analysis_prompt(
    "an expert construction document analyst",
    [
        "Document purpose and scope",
        "Requirements that affect cost or schedule",
        "Risks and items needing clarification",
    ],
    "GENERAL",
    """{
    "document_title": "string or null",
    "requirements": ["requirements"],
    "dates": ["relevant dates"]
  }""",
)

ANALYSIS_PROMPTS: dict[DocumentType, str] = {
    DocumentType.PROPOSAL: PROPOSAL_PROMPT,
    DocumentType.ENVIRONMENTAL: ENVIRONMENTAL_PROMPT,
    DocumentType.HAZMAT: HAZMAT_PROMPT,
    DocumentType.ASBESTOS: HAZMAT_PROMPT,
    DocumentType.GEOTECHNICAL: GEOTECHNICAL_PROMPT,
}


def analysis_prompt_for(document_type: DocumentType) -> str:
    return ANALYSIS_PROMPTS.get(document_type, DEFAULT_PROMPT)


METADATA_PROMPT = f"""You are an expert bid analyst for state DOT highway proposals.

Extract the project metadata needed to create a new bid project:
project name, state and federal project numbers, county, route, location,
letting and bid due dates, contract time in working days, DBE goal,
liquidated damages per day, federal aid status and engineer's estimate.

Return JSON with this exact structure:
{{
  "project_name": "string or null",
  "state_project_number": "string or null",
  "federal_project_number": "string or null",
  "county": "string or null",
  "route": "string or null",
  "location_description": "string or null",
  "letting_date": "YYYY-MM-DD or null",
  "bid_due_date": "YYYY-MM-DD or null",
  "contract_time_days": "number or null",
  "dbe_goal_percentage": "number or null",
  "is_federal_aid": true,
  "liquidated_damages_per_day": "number or null",
  "engineers_estimate": "number or null",
  "owner": "WVDOH, FHWA, County, Municipal, Private, or Other",
  "confidence_score": 0-100,
  "extraction_notes": ["what was found or missing"]
}}

Use null for anything not in the document. Numbers carry no commas or
currency symbols. Keep the confidence score conservative.

{_JSON_ONLY}"""


_CATEGORIES = ", ".join(c.value for c in WorkCategory)
_RISKS = ", ".join(r.value for r in RiskLevel)
_OPPORTUNITIES = ", ".join(o.value for o in OpportunityType)

CATEGORIZATION_PROMPT = f"""You are a senior highway construction estimator.

Categorize each bid line item. Use the reference catalog entries as
examples of how known item codes are classified.

Allowed work categories: {_CATEGORIES}
Allowed risk levels: {_RISKS}
Allowed opportunity types: {_OPPORTUNITIES}

Return JSON with this structure:
{{
  "items": [
    {{
      "id": "line item id as given",
      "work_category": "one allowed category",
      "risk_level": "one allowed risk level",
      "risk_explanation": "short reason",
      "governing_specs": ["spec section codes"],
      "opportunity_type": "one allowed opportunity type or null",
      "confidence": 0-100
    }}
  ]
}}

{_JSON_ONLY}"""


PACKAGING_PROMPT = f"""You are a highway construction estimating manager.

Group the bid line items into work packages that one estimator can price
together. Keep related work in the same package and keep packages to a
manageable size.

Allowed work categories: {_CATEGORIES}

Return JSON with this structure:
{{
  "packages": [
    {{
      "name": "Package name",
      "code": "Short code",
      "description": "What the package covers",
      "work_category": "one allowed category",
      "item_ids": ["line item ids"]
    }}
  ]
}}

{_JSON_ONLY}"""
