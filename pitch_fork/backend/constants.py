MAX_UPLOAD_BYTES = 50 * 1024 * 1024    # 50 MB per document
MAX_REQUEST_BYTES = 200 * 1024 * 1024  # 200 MB (several documents per submission)
CHUNK_SIZE = 1024 * 1024

DOCUMENTS_BUCKET = "company-documents"
REPORTS_BUCKET = "analysis-output-docs"

ALLOWED_DOCUMENT_EXTENSIONS = {".pdf", ".ppt", ".pptx", ".xls", ".xlsx"}

COMPANY_STATUSES = ("Submitted", "Pending", "Analyzed", "In-Diligence", "Rejected", "Invested")
USER_TYPES = ("investor", "founder", "admin")
PREFERRED_LLM_OPTIONS = ("GPT-4", "GPT-3.5", "Claude-3", "Claude-2", "Gemini-Pro")

REPORT_URL_TTL_SECONDS = 3600
DEFAULT_DOWNLOAD_URL_TTL_SECONDS = 60
