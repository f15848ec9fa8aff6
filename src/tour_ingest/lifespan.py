"""Application lifespan management (startup/shutdown hooks)."""

from __future__ import annotations

from contextlib import asynccontextmanager

from .config.settings import get_settings
from .llm.openai_adapter import OpenAIAdapter
from .observability.logger import configure_logging, get_logger
from .processing.content_filter import ContentFilter
from .processing.ocr import VisionOcr
from .processing.pdf_text import PdfTextExtractor
from .processing.tour_normalizer import NormalizeOptions
from .scraping.deep_link_crawler import DeepLinkCrawler
from .scraping.http_fetcher import HttpFetcher
from .scraping.pdf_discovery import PdfDiscovery
from .scraping.playwright_scraper import PlaywrightScraper
from .scraping.smart_scraper import GenericPageScraper
from .services.acquisition_service import (
    AcquisitionService,
    DeepLinkAcquirer,
    GenericPageAcquirer,
    LiteralTextAcquirer,
    PdfAcquirer,
    PdfDiscoveryAcquirer,
    build_chains,
)
from .services.contact_service import ContactService
from .services.dedupe_service import DedupeService
from .services.extraction_service import ExtractionService
from .services.import_service import ImportService
from .services.job_runner import JobRunner
from .services.job_service import JobService
from .services.preview_service import PreviewService
from .services.scrape_service import ScrapeService
from .services.source_classifier import SourceClassifier
from .storage.database import Database
from .storage.minio_client import MinIOClient
from .storage.repositories import AgencyRepository, JobRepository, TourRepository
from .utils.rate_limiter import HostThrottle

logger = get_logger(__name__)

# Populated by lifespan_manager, read by the HTTP layer and the scheduler.
app_state: dict = {}


@asynccontextmanager
async def lifespan_manager():
    """Manage application lifespan (startup and shutdown)."""
    settings = get_settings()

    configure_logging()
    logger.info("starting_application", service_name=settings.service_name)

    database = Database(settings.database_url, echo=settings.database_echo)
    await database.init()
    logger.info("database_initialized")

    minio = MinIOClient(
        endpoint=settings.minio_endpoint,
        access_key=settings.minio_access_key,
        secret_key=settings.minio_secret_key,
        secure=settings.minio_secure,
        bucket=settings.minio_bucket,
        public_base_url=settings.storage_public_base_url,
    )
    if await minio.health_check():
        logger.info("minio_healthy", endpoint=settings.minio_endpoint, bucket=settings.minio_bucket)
    else:
        logger.warning("minio_health_check_failed", endpoint=settings.minio_endpoint)

    # Fetch layer
    fetcher = HttpFetcher(settings.fetch_timeout_ms, settings.user_agent, max_bytes=settings.max_pdf_bytes)
    browser = PlaywrightScraper(default_timeout_ms=settings.browser_timeout_ms, user_agent=settings.user_agent)
    smart = GenericPageScraper(
        fetcher,
        browser,
        min_html_length=settings.min_html_length,
        challenge_markers=settings.bot_challenge_markers,
    )
    throttle = HostThrottle(settings.detail_page_delay_ms)
    content_filter = ContentFilter()

    # LLM
    llm = OpenAIAdapter(api_key=settings.llm_api_key, base_url=settings.llm_base_url)
    extraction = ExtractionService(
        llm,
        model=settings.llm_model,
        max_tokens=settings.llm_max_tokens,
        timeout_seconds=settings.llm_timeout_seconds,
        temperature=settings.llm_temperature,
        max_chars=settings.extraction_max_chars,
        text_batch_max_tours=settings.text_batch_max_tours,
    )
    pdf_text = PdfTextExtractor(
        fetcher,
        VisionOcr(
            llm,
            model=settings.llm_vision_model,
            max_tokens=settings.llm_max_tokens,
            timeout_seconds=settings.llm_timeout_seconds,
        ),
        min_text_chars=settings.pdf_min_text_chars,
        max_ocr_pages=settings.ocr_max_pages,
        render_dpi=settings.ocr_render_dpi,
    )

    # Acquisition chains
    classifier = SourceClassifier(
        settings.listing_path_markers,
        sniffer=fetcher,
        sniff_timeout_ms=settings.content_type_sniff_timeout_ms,
    )
    chains = build_chains(
        pdf=PdfAcquirer(pdf_text),
        deep_link=DeepLinkAcquirer(
            DeepLinkCrawler(smart, content_filter, max_pages=settings.deep_link_max_pages, throttle=throttle)
        ),
        pdf_discovery=PdfDiscoveryAcquirer(
            PdfDiscovery(
                fetcher,
                max_pdfs=settings.pdf_discovery_max_pdfs,
                max_detail_pages=settings.pdf_discovery_max_detail_pages,
                throttle=throttle,
            ),
            pdf_text,
        ),
        generic=GenericPageAcquirer(smart, content_filter),
        literal=LiteralTextAcquirer(),
    )
    acquisition = AcquisitionService(classifier, chains)

    # Persistence repositories (sessions per operation)
    jobs = JobRepository(session_factory=database.session_factory)
    tours = TourRepository(session_factory=database.session_factory)
    agencies = AgencyRepository(session_factory=database.session_factory)

    preview = PreviewService(jobs, minio, fetcher)
    runner = JobRunner(
        jobs,
        agencies,
        acquisition,
        extraction,
        preview=preview,
        backoff_base_ms=settings.retry_backoff_base_ms,
        backoff_cap_ms=settings.retry_backoff_cap_ms,
        default_agency_name=settings.default_agency_name,
    )

    app_state["job_repository"] = jobs
    app_state["job_runner"] = runner
    app_state["job_service"] = JobService(
        jobs,
        agencies,
        default_agency_name=settings.default_agency_name,
        default_max_retries=settings.job_max_retries_default,
        is_running=runner.is_running,
    )
    app_state["import_service"] = ImportService(
        jobs,
        tours,
        agencies,
        preview=preview,
        options=NormalizeOptions.from_settings(settings),
        default_agency_name=settings.default_agency_name,
    )
    app_state["preview_service"] = preview
    app_state["contact_service"] = ContactService(extraction, agencies, content_filter)
    app_state["dedupe_service"] = DedupeService(tours)
    app_state["scrape_service"] = ScrapeService(acquisition, extraction)

    logger.info("application_started")
    try:
        yield app_state
    finally:
        app_state.clear()
        await database.close()
        logger.info("application_shutdown_complete")
