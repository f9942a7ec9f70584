"""Batch processing of many alert ids in bounded chunks."""

import asyncio
from typing import List, Optional, Sequence
from uuid import uuid4

from ...config.logging import bound_context, get_logger, log_error, log_performance
from .exceptions import AlertNotFoundError, RepositoryError
from .models import (
    REPOSITORY_ERROR,
    TIMEOUT,
    Alert,
    BatchConfig,
    DeliveryResult,
)
from .orchestrator import DeliveryOrchestrator
from .repository import AlertRepository
from .retry import RetryController

logger = get_logger(__name__)


class BatchProcessor:
    """
    Run orchestration passes for a list of alert ids.

    Chunks of ``batch_size`` are processed one after another; alerts inside a
    chunk run concurrently. Unknown ids, and ids owned by another user when a
    ``user_id`` scope is given, are skipped without a result.
    """

    def __init__(
        self,
        repository: AlertRepository,
        orchestrator: DeliveryOrchestrator,
        default_config: Optional[BatchConfig] = None,
        sleep=None,
    ):
        self.repository = repository
        self.orchestrator = orchestrator
        self.default_config = default_config or BatchConfig()
        self._sleep = sleep
        self.logger = logger.bind(service="batch_processor")

    async def process_batch(
        self,
        alert_ids: Sequence[str],
        config: Optional[BatchConfig] = None,
        dry_run: bool = False,
        user_id: Optional[str] = None,
    ) -> List[DeliveryResult]:
        """
        Process alerts by id and return every delivery result produced.

        Args:
            alert_ids: Alerts to process; duplicates are processed once
            config: Chunking, per-alert timeout and channel retry settings
            dry_run: Skip transport calls and persistence
            user_id: Only process alerts owned by this user
        """
        config = config or self.default_config
        retry_controller = RetryController(
            max_attempts=config.max_retries + 1,
            base_delay_ms=config.retry_delay_ms,
            sleep=self._sleep,
        )
        ids = list(dict.fromkeys(alert_ids))
        batch_id = str(uuid4())
        start = asyncio.get_running_loop().time()
        results: List[DeliveryResult] = []

        with bound_context(batch_id=batch_id):
            self.logger.info(
                "Batch processing started",
                alert_count=len(ids),
                batch_size=config.batch_size,
                dry_run=dry_run,
            )

            for offset in range(0, len(ids), config.batch_size):
                chunk = ids[offset : offset + config.batch_size]
                alerts = await self._load_chunk(chunk, user_id)
                chunk_results = await asyncio.gather(
                    *(
                        self._process_one(alert, config, dry_run, retry_controller)
                        for alert in alerts
                    )
                )
                for alert_results in chunk_results:
                    results.extend(alert_results)

            duration_ms = (asyncio.get_running_loop().time() - start) * 1000
            self.logger.info(
                "Batch processing completed",
                alert_count=len(ids),
                result_count=len(results),
                successful=sum(1 for result in results if result.success),
            )
            log_performance("process_batch", duration_ms, batch_id=batch_id)

        return results

    async def _load_chunk(
        self, alert_ids: List[str], user_id: Optional[str]
    ) -> List[Alert]:
        alerts = []
        for alert_id in alert_ids:
            try:
                alert = await self.repository.get(alert_id)
            except RepositoryError as e:
                self.logger.error(
                    "Could not load alert for batch", alert_id=alert_id, error=e.message
                )
                continue
            if alert is None:
                self.logger.warning("Alert not found, skipping", alert_id=alert_id)
                continue
            if user_id is not None and alert.user_id != user_id:
                self.logger.warning(
                    "Alert belongs to another user, skipping",
                    alert_id=alert_id,
                    user_id=user_id,
                )
                continue
            alerts.append(alert)
        return alerts

    async def _process_one(
        self,
        alert: Alert,
        config: BatchConfig,
        dry_run: bool,
        retry_controller: RetryController,
    ) -> List[DeliveryResult]:
        try:
            return await asyncio.wait_for(
                self.orchestrator.process(
                    alert.id, dry_run=dry_run, retry_controller=retry_controller
                ),
                timeout=config.timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            self.logger.error(
                "Alert processing timed out", alert_id=alert.id, timeout_ms=config.timeout_ms
            )
            return [self._synthetic_failure(alert, TIMEOUT, dry_run)]
        except RepositoryError as e:
            self.logger.error(
                "Repository failure while processing alert",
                alert_id=alert.id,
                error=e.message,
                exc_info=True,
            )
            return [self._synthetic_failure(alert, REPOSITORY_ERROR, dry_run)]
        except AlertNotFoundError:
            self.logger.warning("Alert removed before processing, skipping", alert_id=alert.id)
            return []
        except Exception as e:
            log_error(e, alert_id=alert.id, operation="process_batch")
            return [self._synthetic_failure(alert, str(e) or type(e).__name__, dry_run)]

    def _synthetic_failure(
        self, alert: Alert, error: str, dry_run: bool
    ) -> DeliveryResult:
        result = DeliveryResult(
            alert_id=alert.id,
            channel=None,
            success=False,
            error=error,
            dry_run=dry_run,
            user_id=alert.user_id,
            alert_type=alert.type,
        )
        self.orchestrator.statistics.record([result])
        return result
