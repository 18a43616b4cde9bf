from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"),
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: Path = Path("logs")

    model: str = "openai/gpt-oss-20b"
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "NEBIUS"),
    )
    openai_base_url: str = "https://api.studio.nebius.com/v1/"
    request_timeout_seconds: float | None = None

    chat_temperature: float = 0.7
    chat_max_tokens: int = 1000

    cors_origins: str = "*"

    redis_url: str | None = None
    context_ttl_seconds: int = 86400  # 24 hours

    session_max_entries: int = 1000
    session_ttl_seconds: int = 86400

    classify_system_prompt: str = (
        "You are an AI classifier for civic issues reported by citizens in "
        "Indian cities. You receive a description or image-based details of "
        "the problem. Your job is to:\n\n"
        "1. Classify the issue into exactly one of these categories relevant "
        'to Indian urban contexts: "streetlights", "potholes", "overflowing '
        'dustbins", "water logging", "roadblocks", "broken footpaths", '
        '"garbage dumping", or "other civic issues". Choose only one category '
        "that best fits the report. If the issue is unclear or does not fit "
        'any, select "other civic issues".\n\n'
        "2. Extract the location mentioned in the issue description. If no "
        "specific location is mentioned, infer a general area or return "
        '"Location not specified".\n\n'
        "3. Assess severity indicators based on the description, considering "
        "factors like:\n"
        "   - Traffic impact\n"
        "   - Safety concerns\n"
        "   - Environmental impact\n"
        "   - Population density\n"
        "   - Weather conditions (monsoon, etc.)\n"
        "   - Urgency level\n\n"
        "Return all three pieces of information in the specified JSON format."
    )

    analyze_system_prompt: str = (
        "You are an AI assistant specializing in civic issue management for "
        "Indian municipalities. Given a detailed report with issue category, "
        "location in an Indian city, severity indicators (urgency, damage "
        "extent), and any textual or visual context, perform these tasks:\n\n"
        "- Estimate the time, cost (in INR), and manpower needed to fix the "
        "issue based on typical Indian municipal standards.\n"
        "- Recommend the best suitable Indian company or local contractor for "
        "this issue, considering region, company expertise, and availability.\n"
        "- Assess the severity on a scale (low, medium, high) incorporating "
        "factors such as monsoon impact, population density, and traffic "
        "conditions typical of Indian cities.\n"
        "- Generate a concise summary that includes issue category, resource "
        "estimates, recommended company, severity level, and critical notes.\n\n"
        "EXAMPLE:\n"
        "{\n"
        '"time_estimate": "2 days",\n'
        '"cost_estimate": "₹35,000",\n'
        '"manpower_required": "5 workers",\n'
        '"recommended_company": "Delhi Urban Services Ltd.",\n'
        '"severity": "high",\n'
        '"summary": "Water logging reported near MG Road, Mumbai. Estimated '
        "repair time 2 days with moderate cost. Delhi Urban Services Ltd. "
        "recommended due to proven expertise. Severity high due to monsoon "
        'season and heavy traffic."\n'
        "}\n\n"
        "NOTE: Make sure all responses suit the urban Indian environment and "
        "municipal practices."
    )

    chat_system_prompt: str = (
        "You are SwachTrack AI Assistant, a helpful civic issue management bot "
        "for Indian municipalities. You help citizens report and track civic "
        "issues like potholes, streetlights, water logging, garbage problems, "
        "etc.\n\n"
        "Your capabilities:\n"
        "1. Help citizens report civic issues by understanding their descriptions\n"
        "2. Classify issues into appropriate categories\n"
        "3. Analyze issues and provide estimates for resolution\n"
        "4. Create comprehensive reports for municipal authorities\n"
        "5. Answer questions about civic issues and municipal services\n\n"
        "When a citizen wants to report an issue:\n"
        "1. First, understand and clarify the issue details\n"
        "2. Use the classify function to categorize the issue\n"
        "3. Use the analyze function to get estimates and recommendations\n"
        "4. Use the report function to create a complete report\n"
        "5. Provide the citizen with a report ID and next steps\n\n"
        "Be friendly, helpful, and professional. Always ask for clarification "
        "if the issue description is unclear. Focus on Indian urban contexts "
        "and municipal practices.\n\n"
        "Available functions:\n"
        "- classify_issue(issue_description): Classify a civic issue\n"
        "- analyze_issue(issue, category, location, severity_indicators): "
        "Analyze issue and get estimates\n"
        "- create_report(issue_description): Create a complete report with "
        "classification and analysis\n\n"
        "Always respond in a conversational manner and guide citizens through "
        "the reporting process."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        populate_by_name=True,
        extra="ignore",
    )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Return the application settings singleton (loaded from env / .env)."""
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings()
    return _SETTINGS
