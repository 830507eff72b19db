ANALYSIS_VERSION = "analysis_v3"

CATEGORY_TYPES = ("team", "product", "market", "financial")
COMPOSITE_TYPES = ("scorecard", "detail-report", "diligence-questions", "founder-report")

ANALYSIS_CONFIG = {
    "team": {
        "prompt_name": "Team-Analysis",
        "report_title": "Team Analysis Report",
        "instructions": (
            "You are an expert at analyzing startup teams and evaluating their capability to execute "
            "on their vision. Provide detailed, actionable insights based on the documents provided."
        ),
        "history_label": "Analyze-Team",
    },
    "product": {
        "prompt_name": "Product-Analysis",
        "report_title": "Product Analysis Report",
        "instructions": (
            "You are an expert at analyzing startup products and evaluating their market fit, innovation, "
            "and competitive advantages. Provide detailed, actionable insights based on the documents provided."
        ),
        "history_label": "Analyze-Product",
    },
    "market": {
        "prompt_name": "Market-Analysis",
        "report_title": "Market Analysis Report",
        "instructions": (
            "You are an expert at analyzing market opportunities, competitive landscapes, and market "
            "positioning for startups. Provide detailed, actionable insights based on the documents provided."
        ),
        "history_label": "Analyze-Market",
    },
    "financial": {
        "prompt_name": "Financial-Analysis",
        "report_title": "Financial Analysis Report",
        "instructions": (
            "You are an expert at analyzing startup financials, including revenue models, unit economics, "
            "burn rate, and financial projections. Provide detailed, actionable insights based on the "
            "documents provided."
        ),
        "history_label": "Analyze-Financials",
    },
    "scorecard": {
        "prompt_name": "Create-ScoreCard",
        "report_title": "Score-Card",
        "instructions": (
            "You are an expert at creating investment scorecards. Review all provided analysis reports and "
            "create a comprehensive scoring assessment. Provide clear scores and ratings based on the analysis."
        ),
        "history_label": "Create-ScoreCard",
    },
    "detail-report": {
        "prompt_name": "Create-Detail-Report",
        "report_title": "Comprehensive Detail Report",
        "instructions": (
            "You are an expert at assembling comprehensive investment reports. Take the provided analysis "
            "reports and include them as complete sections in a single document. Do NOT summarize, condense, "
            "or synthesize: include the full content of each report as separate sections. Add an executive "
            "summary at the beginning."
        ),
        "history_label": "Create-DetailReport",
    },
    "diligence-questions": {
        "prompt_name": "Create-Diligence-Questions",
        "report_title": "Due Diligence Questions",
        "instructions": (
            "You are an expert at generating comprehensive due diligence questions. Review all provided "
            "analysis reports and documents to create targeted, specific questions organized by category "
            "(Product, Market, Team, Financials). Focus on gaps, risks, and areas requiring further "
            "investigation."
        ),
        "history_label": "Create-DiligenceQuestions",
    },
    "founder-report": {
        "prompt_name": "Create-Founder-Report",
        "report_title": "Founder Feedback Report",
        "instructions": (
            "You are an expert advisor providing constructive feedback to founders. Review all analysis "
            "reports and pitch deck materials to create helpful, actionable feedback. Be honest but "
            "supportive, focusing on how founders can improve their business, pitch, and fundraising approach."
        ),
        "history_label": "Create-FounderReport",
    },
}

FORMAT_RULES = (
    "Format the answer as plain text with '#' section headings, '-' bullet points and **bold** "
    "for key terms. Do not use tables or code blocks."
)

DEFAULT_PROMPTS = {
    "Team-Analysis": """Analyze the founding and management team of this company.

Cover:
# Team Composition
- Founders and key executives, their roles and relevant prior experience
# Founder-Market Fit
- Why this team is (or is not) positioned to win in this market
# Execution Track Record
- Evidence of shipping, selling, hiring and fundraising ability
# Gaps and Risks
- Missing roles, key-person risk, red flags
# Verdict
- Rate the team from 1 to 10 and explain the rating in two sentences""",
    "Product-Analysis": """Analyze the product or service of this company.

Cover:
# Problem and Solution
- The customer problem and how the product solves it
# Differentiation
- What is 10x better than the status quo and what is defensible
# Traction and Product-Market Fit Signals
- Usage, retention, pilots, customer evidence
# Technology and Roadmap Risks
# Verdict
- Rate the product from 1 to 10 and explain the rating in two sentences""",
    "Market-Analysis": """Analyze the market opportunity for this company.

Cover:
# Market Size
- TAM, SAM and SOM as stated, with your assessment of their credibility
# Market Dynamics
- Growth drivers, timing, regulation
# Competitive Landscape
- Direct and indirect competitors and the company's positioning
# Go-To-Market
- Channels, sales motion, pricing
# Verdict
- Rate the market opportunity from 1 to 10 and explain the rating in two sentences""",
    "Financial-Analysis": """Analyze the financials of this company.

Cover:
# Revenue Model
- How the company makes money and current revenue
# Unit Economics
- CAC, LTV, gross margin where available
# Burn and Runway
# Projections
- Credibility of the financial plan and key assumptions
# Raise and Valuation
- Amount sought, use of funds, valuation reasonableness
# Verdict
- Rate the financial profile from 1 to 10 and explain the rating in two sentences""",
    "Create-ScoreCard": """Create an investment scorecard from the analysis reports provided.

Score each dimension from 1 to 10 with a one-paragraph justification:
- Team
- Product
- Market
- Financials
- Traction
- Risk profile

Then give a weighted overall assessment. The last line of the scorecard MUST be exactly:
Overall Score: <number from 1 to 10>/10""",
    "Create-Detail-Report": """Assemble a comprehensive detail report for the investment committee.

Start with a one-page executive summary. Then include every analysis report provided, in full, each as
its own section with the original heading. End with the key open questions.""",
    "Create-Diligence-Questions": """Generate due diligence questions for this company.

Organize the questions under the headings Product, Market, Team and Financials. For each question,
note in one line which gap or risk in the reports it addresses. Provide 5 to 10 questions per heading.""",
    "Create-Founder-Report": """Write a feedback report addressed to the founders.

Cover what investors found compelling, the main concerns, concrete improvements to the business and
the pitch, and suggested next steps for the fundraising process. Keep the tone honest but supportive.""",
}
