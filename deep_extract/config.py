from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Off-site provider keys (job-level secret refs take precedence)
    exa_api_key: str = ""
    serpapi_api_key: str = ""
    company_data_api_key: str = ""
    social_enrich_api_key: str = ""

    # Captcha solving
    captcha_api_key: str = ""
    captcha_solve_timeout_ms: int = 120000

    # Synthesis (OpenAI-compatible endpoint)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    synthesis_model: str = "gpt-4.1-mini"
    synthesis_max_tokens: int = 1800

    # Markdown conversion
    markdown_remote_endpoint: str = "https://markdown.new/"
    markdown_remote_timeout_s: float = 15.0
    markdown_default_max_docs: int = 20

    # Artifacts
    extraction_dir: str = ".cache/extractions"

    # Rendering
    render_max_pages: int = 6
    render_page_timeout_ms: int = 45000
    render_min_page_timeout_ms: int = 6000
    render_phase_cap_ms: int = 300000
    render_network_log_limit: int = 3000

    # Run defaults
    default_budget_usd: float = 5.0
    default_max_duration_ms: int = 1800000
    min_max_duration_ms: int = 10000
    base_crawl_timeout_ms: int = 12000

    # Phase degrade thresholds (remaining wall-clock ms required to start)
    render_min_remaining_ms: int = 20000
    markdown_min_remaining_ms: int = 5000
    offsite_min_remaining_ms: int = 30000
    llm_min_remaining_ms: int = 15000

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"
    log_file_enabled: bool = True

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
