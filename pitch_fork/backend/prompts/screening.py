SCREENING_VERSION = "screen_v2"

SYSTEM_PROMPT = "You are an expert investment screening assistant. Always respond with valid JSON."

DECK_ATTACHED_NOTE = """PITCH DECK CONTENT (supplementary):
<<<{DECK_TEXT}>>>

CRITICAL INSTRUCTIONS:
- The "Official Company Information" above has been VERIFIED AND CORRECTED by the founder
- This information is MORE ACCURATE than what may be in the pitch deck
- USE the official company information as your PRIMARY SOURCE for screening
- The pitch deck is SUPPLEMENTARY: use it for additional context, team info and vision
- If there are ANY DISCREPANCIES between the official information and the pitch deck, ALWAYS use the official information
- For example, if official info says "Revenue: $1.2M ARR" but the pitch deck shows "$800K", use $1.2M

The founder has updated this information to be current and accurate."""

NO_DECK_NOTE = "No pitch deck is available, evaluate based on the official company information provided."

USER_PROMPT_TEMPLATE = """You are an investment screening assistant. Your job is to evaluate if a company matches an investor's investment criteria.

INVESTOR'S INVESTMENT CRITERIA:
{INVESTMENT_CRITERIA}

OFFICIAL COMPANY INFORMATION (Verified and Corrected by Founder):
{COMPANY_SUMMARY}

{DECK_SECTION}

TASK:
Based on the investor's criteria and the OFFICIAL COMPANY INFORMATION (not the pitch deck), determine if this company should be:
- "Accept": The company matches the investor's criteria and should proceed to detailed analysis
- "Reject": The company does not match the investor's criteria and should be screened out

Provide your response in the following JSON format:
{
  "recommendation": "Accept" or "Reject",
  "reason": "A brief 2-3 sentence explanation of why you made this recommendation, specifically referencing the investor's criteria and the official company information"
}

Be strict but fair. Only recommend "Accept" if there's a clear match with the investor's stated criteria. Base your decision on the official company information provided above."""
