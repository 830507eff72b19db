from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SignupRequest(BaseModel):
    email: str
    password: str
    confirm_password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    user_type: str = "investor"


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    user_type: str
    redirect_to: str


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None


class CompanyFields(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    industry: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = None
    contact_name_1: Optional[str] = None
    title_1: Optional[str] = None
    email_1: Optional[str] = None
    phone_1: Optional[str] = None
    contact_name_2: Optional[str] = None
    title_2: Optional[str] = None
    email_2: Optional[str] = None
    phone_2: Optional[str] = None
    funding_sought: Optional[str] = None
    funding_stage: Optional[str] = None
    serviceable_market_size: Optional[str] = None
    key_team_members: Optional[str] = None
    revenue: Optional[str] = None
    valuation: Optional[str] = None


class StatusUpdate(BaseModel):
    status: str


class DocumentUpdate(BaseModel):
    document_name: Optional[str] = None
    description: Optional[str] = None


class InvestorSelection(BaseModel):
    investor_user_ids: List[str] = Field(default_factory=list)


class InvestorPreferences(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    firm_name: Optional[str] = None
    focus_areas: Optional[str] = None
    comment: Optional[str] = None
    investment_criteria_doc: Optional[str] = None


class PromptCreate(BaseModel):
    prompt_name: str
    prompt_detail: str
    preferred_llm: Optional[str] = None


class PromptUpdate(BaseModel):
    prompt_name: Optional[str] = None
    prompt_detail: Optional[str] = None
    preferred_llm: Optional[str] = None


class ScreeningRequest(BaseModel):
    company_id: str
    analysis_id: Optional[str] = None


class ScreeningResponse(BaseModel):
    analysis_id: str
    recommendation: str
    reason: str
    status: str


class AnalysisRequest(BaseModel):
    company_id: str
    analysis_type: str
    analysis_id: Optional[str] = None
    prompt: Optional[str] = None
    document_ids: Optional[List[str]] = None


class CreateJobResponse(BaseModel):
    job_id: str
    status: str


class JobStatusResponse(BaseModel):
    job_id: str
    kind: str
    status: str
    progress: int
    company_id: Optional[str] = None
    analysis_id: Optional[str] = None
    analysis_type: Optional[str] = None
    result: Optional[Dict[str, object]] = None
    error: Optional[str] = None


class MessageEmailRequest(BaseModel):
    message_title: Optional[str] = None
    message_detail: Optional[str] = None
    company_name: Optional[str] = None
    company_id: Optional[str] = None


class DownloadUrlRequest(BaseModel):
    file_path: Optional[str] = None
    expires_in: Optional[int] = None


class DownloadUrlResponse(BaseModel):
    signed_url: str
    expires_in: int
