"""
Application Wiring

Builds the object graph from an ImageGuardConfig and a ConfigStore and
owns its lifecycle.

Usage:
    guard = ImageGuard.build(get_config(), config_store)
    guard.start()
    ...
    guard.shutdown()
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from imageguard.cache import ArtifactCacheStore, InvalidationListener
from imageguard.config import ImageGuardConfig
from imageguard.delivery import (
    AccessPolicy,
    FixedWindowRateLimiter,
    ImageTokenSigner,
    ProtectedDeliveryGateway,
)
from imageguard.jobs import GenerationScheduler, JobTracker
from imageguard.notifications import NotificationCenter
from imageguard.settings import ConfigStore, InMemoryConfigStore
from imageguard.watermark import WatermarkRenderer
from imageguard.watermark.service import WatermarkService


logger = logging.getLogger(__name__)


@dataclass
class ImageGuard:
    """Container for the wired components."""
    config: ImageGuardConfig
    config_store: ConfigStore
    cache_store: ArtifactCacheStore
    notifications: NotificationCenter
    scheduler: GenerationScheduler
    service: WatermarkService
    listener: InvalidationListener
    gateway: ProtectedDeliveryGateway

    @classmethod
    def build(
        cls,
        config: ImageGuardConfig,
        config_store: Optional[ConfigStore] = None,
        renderer: Optional[WatermarkRenderer] = None,
    ) -> "ImageGuard":
        config_store = config_store or InMemoryConfigStore()
        cache_store = ArtifactCacheStore(config.media_root)
        notifications = NotificationCenter(max_per_day=config.max_notifications_per_day)

        service = WatermarkService(
            config_store,
            cache_store,
            renderer=renderer or WatermarkRenderer(media_root=config.media_root),
            notifications=notifications,
            sync_timeout=config.sync_timeout_seconds,
        )
        scheduler = GenerationScheduler(
            service.generate,
            batch_handler=service.regenerate_item,
            tracker=JobTracker(),
            worker_count=config.worker_count,
            pool_size=config.render_pool_size,
            batch_size=config.batch_size,
        )
        service.scheduler = scheduler

        listener = InvalidationListener(cache_store, scheduler=scheduler)
        listener.attach(config_store)

        gateway = ProtectedDeliveryGateway(
            service,
            ImageTokenSigner(
                config.token_secret,
                algorithm=config.token_algorithm,
                ttl_seconds=config.token_ttl_seconds,
            ),
            rate_limiter=FixedWindowRateLimiter(
                max_requests=config.rate_limit_max_requests,
                window_seconds=config.rate_limit_window_seconds,
            ),
            policy=AccessPolicy(
                blocked_user_agents=list(config.blocked_user_agents),
                allowed_referer_domains=list(config.allowed_referer_domains),
                allowed_path_prefixes=list(config.allowed_path_prefixes),
            ),
            max_age=config.delivery_max_age,
        )

        return cls(
            config=config,
            config_store=config_store,
            cache_store=cache_store,
            notifications=notifications,
            scheduler=scheduler,
            service=service,
            listener=listener,
            gateway=gateway,
        )

    def start(self, periodic_cleanup: bool = True) -> None:
        self.scheduler.start()
        if periodic_cleanup:
            self.scheduler.start_periodic_cleanup(self.config.cleanup_interval_seconds, self.run_cleanup)
        logger.info(f"ImageGuard started (media root: {self.config.media_root})")

    def shutdown(self) -> None:
        self.listener.detach()
        self.scheduler.shutdown()
        logger.info("ImageGuard stopped")

    def run_cleanup(self) -> Dict[str, Any]:
        """Age-based cache cleanup plus job and notification retention."""
        results = {
            "artifacts_removed": self.cache_store.invalidate_older_than(self.config.cache_retention),
            "jobs_removed": self.scheduler.cleanup(self.config.job_retention),
            "notifications_removed": self.notifications.purge_dismissed_older_than(
                self.config.notification_retention
            ),
        }
        logger.info(f"Periodic cleanup: {results}")
        return results
