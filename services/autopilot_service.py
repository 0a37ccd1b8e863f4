"""
Autopilot Service Module

Runs the per-user autopilot cycle: ingest the latest articles, filter
sensitive ones, skip anything the dedup ledger has seen, render a card
for each new article and optionally publish it. A cycle is claimed with
an atomic update of last_run_at so manual runs, cron passes and the
background loop never overlap for the same user.

AutopilotLoop keeps one cancelable worker thread per user for hosts that
want autopilot to run in-process instead of from cron.
"""

import threading
from contextlib import AbstractContextManager
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, List, Callable, Any

import pandas as pd

from config import settings
from data.models import (
    Article, AutopilotRun, AutopilotSettings, NewsCard, Notification, ResolvedFields,
    RunResult, RunStatus, SensitiveAction, SourceConfig,
)
from data.protocols import AutopilotStorage, LinkLedgerStorage
from data.template import Template
from services.card_service import CardService
from services.ledger_service import DedupLedger
from services.protocols import ArticleSource
from services.publish_service import PublishOrchestrator
from services.sensitizer import censor_text, find_sensitive_word, sanitize_text
from utils.exceptions import ConfigurationError
from utils.helpers import truncate_text
from utils.logger import get_logger

logger = get_logger(__name__)

NOT_ENABLED_MESSAGE = "Autopilot is not enabled"
NOT_DUE_MESSAGE = "Autopilot already ran recently"
NO_TEMPLATE_MESSAGE = "No template selected for autopilot"
TEMPLATE_NOT_FOUND_MESSAGE = "Selected template not found"
NOTIFICATION_TITLE = "New Card Generated"
NOTIFICATION_LINK = "/cards"
STATS_RUN_LIMIT = 5000
RUN_HISTORY_COLUMNS = ["id", "user_id", "status", "started_at", "completed_at",
                       "news_found", "cards_created", "skipped", "errors"]


def default_source_config(source_id: str) -> SourceConfig:
    source_config = SourceConfig.default()
    if source_id and source_id != source_config.id:
        raise ConfigurationError(f"Unknown news source {source_id}")
    return source_config


class AutopilotService:
    """Per-user autopilot cycles, history and stats."""

    def __init__(self, storage: AutopilotStorage, article_service: ArticleSource, card_service: CardService,
                 publisher: Optional[PublishOrchestrator] = None,
                 ledger_storage: Optional[LinkLedgerStorage] = None,
                 source_config_factory: Callable[[str], SourceConfig] = default_source_config,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Initialize the autopilot service.

        Args:
            storage: Settings, runs, word lists and notifications.
            article_service: Ingestion adapter.
            card_service: Renders and persists cards.
            publisher: Needed only for users with auto_publish enabled.
            ledger_storage: Dedup ledger store; defaults to storage.
            source_config_factory: Maps a settings source_id to a SourceConfig.
            clock: Time source, injectable for tests.
        """
        self.storage = storage
        self.article_service = article_service
        self.card_service = card_service
        self.publisher = publisher
        self.ledger_storage = ledger_storage or storage
        self.source_config_factory = source_config_factory
        self.clock = clock

    # =========================================================================
    # Cycle
    # =========================================================================

    @staticmethod
    def _claim_gap(autopilot_settings: AutopilotSettings, force: bool) -> timedelta:
        if force:
            return timedelta(seconds=settings.MANUAL_RUN_COOLDOWN_SECONDS)
        return timedelta(minutes=max(autopilot_settings.check_interval, settings.MIN_CHECK_INTERVAL_MINUTES))

    def run_once(self, user_id: str, force: bool = False) -> RunResult:
        """
        Run one autopilot cycle for a user.

        Args:
            user_id: Owner of the autopilot settings.
            force: Manual trigger; only the short manual cooldown applies.

        Returns:
            RunResult: Counts for the cycle. success is False when the user is
            disabled, the cycle was not claimed, or the run failed as a whole.
        """
        autopilot_settings = self.storage.get_autopilot_settings(user_id)
        if autopilot_settings is None or not autopilot_settings.is_enabled:
            return RunResult(success=False, message=NOT_ENABLED_MESSAGE, user_id=user_id)

        now = self.clock()
        if not self.storage.claim_autopilot_run(user_id, now, self._claim_gap(autopilot_settings, force)):
            logger.info(f"Autopilot cycle for {user_id} not claimed; another run is recent or in progress")
            return RunResult(success=False, message=NOT_DUE_MESSAGE, user_id=user_id)

        run = self.storage.create_autopilot_run(AutopilotRun(
            id=None, user_id=user_id, status=RunStatus.RUNNING, started_at=now,
        ))
        logger.info(f"Autopilot run {run.id} started for {user_id}")

        try:
            self._execute(run, autopilot_settings)
            run.status = RunStatus.COMPLETED
        except Exception as e:
            logger.error(f"Autopilot run {run.id} for {user_id} failed: {e}", exc_info=True)
            run.errors.append(f"Autopilot run failed: {e}")
            run.status = RunStatus.FAILED

        run.completed_at = self.clock()
        self.storage.complete_autopilot_run(run)
        self.storage.update_autopilot_error(user_id, run.errors[-1] if run.errors else None)

        logger.info(f"Autopilot run {run.id} {run.status.value}: found={run.news_found} "
                    f"created={run.cards_created} skipped={run.skipped} errors={len(run.errors)}")
        return RunResult(
            success=run.status == RunStatus.COMPLETED,
            news_found=run.news_found,
            cards_created=run.cards_created,
            skipped=run.skipped,
            errors=len(run.errors),
            run_id=run.id,
            message=run.errors[-1] if run.status == RunStatus.FAILED else "",
            error_messages=list(run.errors),
            user_id=user_id,
        )

    def _load_template(self, autopilot_settings: AutopilotSettings) -> Template:
        if not autopilot_settings.template_id:
            raise ConfigurationError(NO_TEMPLATE_MESSAGE)
        try:
            return self.card_service.load_template(autopilot_settings.template_id)
        except ConfigurationError as e:
            raise ConfigurationError(TEMPLATE_NOT_FOUND_MESSAGE) from e

    def _execute(self, run: AutopilotRun, autopilot_settings: AutopilotSettings) -> None:
        """Body of a claimed cycle. Batch-level problems raise; per-article ones are counted."""
        template = self._load_template(autopilot_settings)
        source_config = self.source_config_factory(autopilot_settings.source_id)
        mapping = self.card_service.find_mapping(source_config.id, autopilot_settings.template_id)
        words = self.storage.get_sensitive_words(run.user_id) if autopilot_settings.sensitive_filter else []
        ledger = DedupLedger(self.ledger_storage, source_config.id)

        articles = self.article_service.fetch_latest(source_config, is_known=ledger.is_processed)
        run.news_found = len(articles)

        if not autopilot_settings.generate_cards:
            logger.info(f"Card generation is off for {run.user_id}; {len(articles)} articles left untouched")
            return

        for article in articles:
            try:
                created = self._process_article(article, autopilot_settings, template, mapping, words, ledger)
            except Exception as e:
                logger.error(f"Error processing article {article.link}: {e}", exc_info=True)
                run.errors.append(f"Error processing article {article.link}: {e}")
                continue

            if created is None:
                run.skipped += 1
                continue
            run.cards_created += 1

            card, resolved = created
            if autopilot_settings.auto_publish:
                try:
                    self._auto_publish(card, resolved, autopilot_settings)
                except Exception as e:
                    logger.error(f"Auto-publish of card {card.id} failed: {e}")
                    run.errors.append(f"Auto-publish of card {card.id} failed: {e}")

    def _screen(self, article: Article, autopilot_settings: AutopilotSettings,
                words: List[str]) -> Optional[Article]:
        """Apply the sensitive filter. Returns None when the article must be skipped."""
        if not autopilot_settings.sensitive_filter:
            return article

        if autopilot_settings.sensitive_action == SensitiveAction.MASK:
            title = censor_text(sanitize_text(article.title), words)
            description = censor_text(sanitize_text(article.description), words)
            return article.with_text(title or "", description or "")

        hit = find_sensitive_word(f"{article.title}\n{article.description}", words)
        if hit:
            logger.info(f"Skipping sensitive content ({hit}): {truncate_text(article.title, 50)}")
            return None
        return article

    def _process_article(self, article: Article, autopilot_settings: AutopilotSettings, template: Template,
                         mapping, words: List[str], ledger: DedupLedger):
        """
        Turn one article into a stored card.

        Returns:
            (NewsCard, ResolvedFields) for a new card, or None when skipped.
        """
        screened = self._screen(article, autopilot_settings, words)
        if screened is None:
            return None

        if ledger.is_processed(article.link):
            logger.info(f"Duplicate found, skipping: {truncate_text(article.title, 50)}")
            return None

        png, resolved = self.card_service.render_article(screened, template, mapping)

        if ledger.commit(article.link, article.title) is None:
            return None

        card = self.card_service.save_card(screened, png, autopilot_settings.template_id, mapping,
                                           user_id=autopilot_settings.user_id)

        if autopilot_settings.notify_on_new_card:
            self.storage.create_notification(Notification(
                user_id=autopilot_settings.user_id,
                title=NOTIFICATION_TITLE,
                message=f"Card created for: {truncate_text(screened.title, 60)}",
                link=NOTIFICATION_LINK,
            ))
        return card, resolved

    def _auto_publish(self, card: NewsCard, resolved: ResolvedFields, autopilot_settings: AutopilotSettings) -> None:
        if self.publisher is None or not autopilot_settings.social_account_id:
            logger.warning(f"Auto-publish is on for {autopilot_settings.user_id} but no social account is set")
            return

        if autopilot_settings.publish_delay_minutes > 0:
            scheduled_for = self.clock() + timedelta(minutes=autopilot_settings.publish_delay_minutes)
            self.publisher.schedule(autopilot_settings.social_account_id, scheduled_for,
                                    news_card_id=card.id, caption=resolved.caption)
        else:
            self.publisher.publish_now(card.id, autopilot_settings.social_account_id, resolved.caption)

    def run_due_users(self) -> List[RunResult]:
        """Cron pass: run every enabled user whose interval has elapsed."""
        now = self.clock()
        results = []
        for autopilot_settings in self.storage.list_enabled_autopilot_settings():
            min_gap = self._claim_gap(autopilot_settings, force=False)
            if not autopilot_settings.is_due(now, min_gap):
                continue
            try:
                results.append(self.run_once(autopilot_settings.user_id))
            except Exception as e:
                logger.error(f"Autopilot pass for {autopilot_settings.user_id} failed: {e}", exc_info=True)
                results.append(RunResult(success=False, errors=1, message=str(e),
                                         user_id=autopilot_settings.user_id))
        logger.info(f"Autopilot cron pass processed {len(results)} users")
        return results

    # =========================================================================
    # History
    # =========================================================================

    def get_runs(self, user_id: str, limit: Optional[int] = None) -> pd.DataFrame:
        """Run history, newest first, as a DataFrame."""
        runs = self.storage.get_autopilot_runs(user_id, limit or settings.AUTOPILOT_HISTORY_LIMIT)
        rows = []
        for run in runs:
            row = asdict(run)
            row["status"] = run.status.value
            rows.append(row)
        return pd.DataFrame(rows, columns=RUN_HISTORY_COLUMNS)

    def get_stats(self, user_id: str) -> Dict[str, Any]:
        """Completed runs and cards created since midnight, plus the most recent runs."""
        midnight = self.clock().replace(hour=0, minute=0, second=0, microsecond=0)
        today = self.storage.get_autopilot_runs(user_id, STATS_RUN_LIMIT, since=midnight)
        recent = self.storage.get_autopilot_runs(user_id, settings.AUTOPILOT_RECENT_RUNS)
        return {
            "todayRuns": sum(1 for run in today if run.status == RunStatus.COMPLETED),
            "totalCardsToday": sum(run.cards_created for run in today),
            "recentRuns": [
                {
                    "id": run.id,
                    "status": run.status.value,
                    "startedAt": run.started_at.isoformat() if run.started_at else None,
                    "completedAt": run.completed_at.isoformat() if run.completed_at else None,
                    "newsFound": run.news_found,
                    "cardsCreated": run.cards_created,
                    "skipped": run.skipped,
                    "errors": run.errors,
                }
                for run in recent
            ],
        }


# =============================================================================
# In-process Loop
# =============================================================================

@dataclass
class LoopHandle:
    """A running per-user loop and the event that stops it."""
    user_id: str
    thread: threading.Thread
    stop_event: threading.Event

    @property
    def is_alive(self) -> bool:
        return self.thread.is_alive()


class AutopilotLoop:
    """
    One cancelable worker thread per user.

    session_factory returns a context manager yielding an AutopilotService;
    each thread enters its own session so database connections are never
    shared between threads. The persisted is_enabled flag is re-read every
    cycle and a disabled user ends the loop.
    """

    def __init__(self, session_factory: Callable[[], AbstractContextManager],
                 poll_seconds: Optional[float] = None, join_timeout: Optional[float] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.session_factory = session_factory
        self.poll_seconds = poll_seconds
        self.join_timeout = settings.LOOP_JOIN_TIMEOUT if join_timeout is None else join_timeout
        self.clock = clock
        self._handles: Dict[str, LoopHandle] = {}
        self._lock = threading.Lock()

    def is_running(self, user_id: str) -> bool:
        with self._lock:
            handle = self._handles.get(user_id)
            return handle is not None and handle.is_alive

    def start(self, user_id: str) -> Optional[LoopHandle]:
        """
        Start the loop for a user.

        Returns:
            Optional[LoopHandle]: The new handle, or None if a loop is already running.
        """
        with self._lock:
            existing = self._handles.get(user_id)
            if existing is not None and existing.is_alive:
                logger.warning(f"Autopilot loop already running for {user_id}")
                return None

            stop_event = threading.Event()
            thread = threading.Thread(target=self._run, args=(user_id, stop_event),
                                      name=f"autopilot-{user_id}", daemon=True)
            handle = LoopHandle(user_id=user_id, thread=thread, stop_event=stop_event)
            self._handles[user_id] = handle
            thread.start()

        logger.info(f"Autopilot loop started for {user_id}")
        return handle

    def stop(self, user_id: str) -> bool:
        """Signal the user's loop to stop and wait for it. Returns False if none was running."""
        with self._lock:
            handle = self._handles.pop(user_id, None)
        if handle is None:
            return False

        handle.stop_event.set()
        if handle.thread is not threading.current_thread():
            handle.thread.join(self.join_timeout)
        if handle.is_alive:
            logger.warning(f"Autopilot loop for {user_id} did not stop within {self.join_timeout}s")
        else:
            logger.info(f"Autopilot loop stopped for {user_id}")
        return True

    def stop_all(self) -> None:
        with self._lock:
            user_ids = list(self._handles)
        for user_id in user_ids:
            self.stop(user_id)

    def _wait_seconds(self, autopilot_settings: AutopilotSettings) -> float:
        if self.poll_seconds is not None:
            return self.poll_seconds
        return max(autopilot_settings.check_interval, settings.MIN_CHECK_INTERVAL_MINUTES) * 60

    def _run(self, user_id: str, stop_event: threading.Event) -> None:
        try:
            with self.session_factory() as service:
                while not stop_event.is_set():
                    autopilot_settings = service.storage.get_autopilot_settings(user_id)
                    if autopilot_settings is None or not autopilot_settings.is_enabled:
                        logger.info(f"Autopilot disabled for {user_id}, ending loop")
                        break

                    if autopilot_settings.is_due(self.clock()):
                        try:
                            service.run_once(user_id)
                        except Exception as e:
                            logger.error(f"Autopilot cycle for {user_id} failed: {e}", exc_info=True)

                    stop_event.wait(self._wait_seconds(autopilot_settings))
        except Exception as e:
            logger.error(f"Autopilot loop for {user_id} crashed: {e}", exc_info=True)
        finally:
            with self._lock:
                handle = self._handles.get(user_id)
                if handle is not None and handle.stop_event is stop_event:
                    del self._handles[user_id]

    def toggle(self, user_id: str, action: str) -> Dict[str, Any]:
        """
        Persist is_enabled for a user and start or stop the loop to match.

        Args:
            user_id: Owner of the settings.
            action: 'start' or 'stop'.

        Returns:
            Dict with 'success' and 'message'.
        """
        if action not in ("start", "stop"):
            return {"success": False, "message": f"Invalid action: {action}"}

        enable = action == "start"
        with self.session_factory() as service:
            if not service.storage.set_autopilot_enabled(user_id, enable):
                return {"success": False, "message": "Autopilot settings not found"}

        if enable:
            if self.start(user_id) is None:
                return {"success": True, "message": "Autopilot already running"}
            return {"success": True, "message": "Autopilot started"}

        self.stop(user_id)
        return {"success": True, "message": "Autopilot stopped"}
