"""
Service wiring.

Builds every service once from settings. Optional collaborators (the model
classifier and each data provider) are only wired when their API key is
configured; asking for one that is missing raises NotConfiguredError.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from leadintel.config import Settings, settings as default_settings
from leadintel.database import create_engine, create_session_factory
from leadintel.exceptions import NotConfiguredError
from leadintel.logging_config import setup_logging
from leadintel.providers import DEFAULT_REGISTRATIONS, PROVIDER_CLASSES
from leadintel.services.credit_ledger import CreditLedger
from leadintel.services.enrichment_pipeline import EnrichmentPipeline
from leadintel.services.intelligence_scorer import IntelligenceScorer
from leadintel.services.list_builder import ListBuilder
from leadintel.services.llm_classifier import LLMClassifier, create_llm_classifier
from leadintel.services.market_signal_processor import MarketSignalProcessor
from leadintel.services.performance_tracker import PerformanceTracker
from leadintel.services.persona_signal_detector import PersonaSignalDetector
from leadintel.services.provider_orchestrator import ProviderOrchestrator
from leadintel.services.rate_limiter import RateLimiterRegistry
from leadintel.services.signal_detector import SignalDetector
from leadintel.services.stage_promoter import PipelineStagePromoter, PromotionThresholds
from leadintel.services.strategy_cache import StrategyCache, StrategyGenerator

logger = logging.getLogger(__name__)


PROVIDER_KEY_SETTINGS = {
    "apollo": "APOLLO_API_KEY",
    "leadmagic": "LEADMAGIC_API_KEY",
    "prospeo": "PROSPEO_API_KEY",
}


class ServiceContainer:
    """Holds one instance of every service"""

    def __init__(
        self,
        config: Optional[Settings] = None,
        engine: Optional[AsyncEngine] = None,
        session_factory: Optional[async_sessionmaker] = None,
        classifier: Optional[LLMClassifier] = None
    ):
        self.config = config or default_settings
        self.engine = engine
        if session_factory is None:
            self.engine = engine or create_engine(self.config.DATABASE_URL)
            session_factory = create_session_factory(self.engine)
        self.session_factory = session_factory

        setup_logging(self.config.LOG_LEVEL)

        if classifier is None and self.config.LLM_API_KEY:
            classifier = create_llm_classifier(self.config.LLM_API_KEY, self.config.LLM_BASE_URL)
        self.classifier = classifier

        self.ledger = CreditLedger(session_factory)
        self.rate_limiters = RateLimiterRegistry()
        self.performance_tracker = PerformanceTracker(session_factory)
        self.orchestrator = ProviderOrchestrator(
            self.ledger,
            rate_limiters=self.rate_limiters,
            performance_tracker=self.performance_tracker,
            timeout=self.config.PROVIDER_TIMEOUT_SECONDS,
        )
        self._register_providers()

        self.scorer = IntelligenceScorer(floor=self.config.INTELLIGENCE_SCORE_FLOOR)
        self.signal_detector = SignalDetector(session_factory, self.classifier)
        self.persona_detector = PersonaSignalDetector(session_factory, self.classifier)
        self.strategy_cache = StrategyCache(session_factory, ttl_hours=self.config.STRATEGY_TTL_HOURS)
        self.strategy_generator = StrategyGenerator(
            session_factory,
            self.classifier,
            self.performance_tracker,
            self.strategy_cache,
            available_providers=[r.name for r in self.orchestrator.catalog()] or None,
        )
        self.enrichment_pipeline = EnrichmentPipeline(
            session_factory, self.orchestrator, window_size=self.config.ENRICHMENT_BATCH_SIZE
        )
        self.stage_promoter = PipelineStagePromoter(
            session_factory,
            self.signal_detector,
            scorer=self.scorer,
            persona_detector=self.persona_detector,
            thresholds=PromotionThresholds(
                single_signal=self.config.QUALIFY_SINGLE_SIGNAL,
                pair_signal=self.config.QUALIFY_PAIR_SIGNAL,
                aggregate_score=self.config.QUALIFY_AGGREGATE_SCORE,
            ),
            window_size=self.config.ENRICHMENT_BATCH_SIZE,
        )
        self.list_builder = ListBuilder(
            session_factory,
            signal_detector=self.signal_detector,
            scorer=self.scorer,
            strategy_generator=self.strategy_generator,
            fit_floor=self.config.ICP_FIT_FLOOR,
            pipeline=self.enrichment_pipeline,
        )

        self.market_signal_processor = None
        if self.classifier is not None:
            self.market_signal_processor = MarketSignalProcessor(
                session_factory,
                self.classifier,
                signal_detector=self.signal_detector,
                relevance_threshold=self.config.MARKET_RELEVANCE_THRESHOLD,
                confidence_threshold=self.config.EXPOSURE_CONFIDENCE_THRESHOLD,
                batch_size=self.config.EXPOSURE_BATCH_SIZE,
            )

    def _register_providers(self):
        for name, key_setting in PROVIDER_KEY_SETTINGS.items():
            api_key = getattr(self.config, key_setting, None)
            if not api_key:
                logger.info(f"{key_setting} not configured, skipping {name}")
                continue
            provider = PROVIDER_CLASSES[name](api_key, timeout=self.config.PROVIDER_TIMEOUT_SECONDS)
            self.orchestrator.register(provider, DEFAULT_REGISTRATIONS[name])

    def require(self, name: str):
        """Return a wired service or raise NotConfiguredError"""
        service = getattr(self, name, None)
        if service is None:
            raise NotConfiguredError(name)
        return service

    async def close(self):
        if self.engine is not None:
            await self.engine.dispose()
