EXTRACTION_VERSION = "specs_v1"

COMPANY_SPEC_FIELDS = (
    "name",
    "url",
    "description",
    "industry",
    "serviceable_market_size",
    "country",
    "key_team_members",
    "revenue",
    "valuation",
    "funding_sought",
)

SYSTEM_PROMPT = """Extract EXACTLY ONE JSON object from the pitch-deck text below.

Rules:
- Use only deck content (no outside info).
- All fields = STRING, keep units/symbols (e.g., "$2.5M", "10k users").
- If unknown, return "".
- For multiple team members, separate with semicolons.
- Industry must be "PrimaryIndustry; Sub-Industry".
  PrimaryIndustry is one of {
Tech / AI / SaaS, Healthcare / Life Sciences, Consumer, FinTech, Climate / Energy,
DeepTech / Frontier (space, robotics, quantum, etc.), Manufacturing, Other}.
- Valid JSON only, no commentary.

FIELDS
{
  "name": "Company name",
  "url": "Website URL",
  "description": "One-sentence product/service description",
  "industry": "PrimaryIndustry; Sub-Industry",
  "serviceable_market_size": "Market size as stated (with units/currency)",
  "country": "Country of operation",
  "key_team_members": "Format: Name | Role | Worked-at; ...",
  "revenue": "Latest/projections with units",
  "valuation": "Valuation with units",
  "funding_sought": "Raise amount & terms"
}

OUTPUT
Return only the JSON object."""

USER_PROMPT_TEMPLATE = """Please analyze this pitch deck content and extract the company information:

<<<{DECK_TEXT}>>>"""

KEY_INFO_FIELDS = ("company_name", "industry", "team_members")

KEY_INFO_SYSTEM_PROMPT = """You are an expert at extracting key business information from company documents.

Extract the following information from the document text:
- company_name: The official name of the company
- industry: The industry or sector the company operates in
- team_members: Names and roles of key team members (format as a single string)

If the document contains multiple pages or slides, analyze all visible content.

Return only valid JSON in this exact format:
{
  "company_name": "extracted company name or empty string",
  "industry": "extracted industry or empty string",
  "team_members": "extracted team members or empty string"
}"""

KEY_INFO_USER_PROMPT_TEMPLATE = """Please analyze this document and extract the company name, industry, and key team members.

<<<{DOCUMENT_TEXT}>>>"""
