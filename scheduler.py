"""
Weekly newsletter job.

Wraps an APScheduler BackgroundScheduler; the job never runs concurrently
with itself (max_instances=1, missed runs coalesce into one).
"""
import logging
import threading
from datetime import timedelta
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from pymongo import DESCENDING

import config
from database import db, get_documents, is_object_id, now_utc, to_object_id
from emailer import EmailService, email_service

logger = logging.getLogger(__name__)

JOB_ID = "weekly-newsletter"


def _site_social_links() -> Dict[str, str]:
    settings = db["sitesettings"].find_one({"singleton": True}) or {}
    return {k: v for k, v in (settings.get("social_links") or {}).items() if v}


def _with_author_and_category(posts: List[dict]) -> List[dict]:
    """Attach author_name / category_name used by the newsletter cards."""
    for post in posts:
        author = None
        if is_object_id(post.get("author_id")):
            author = db["user"].find_one({"_id": to_object_id(post["author_id"])}, {"name": 1})
        post["author_name"] = author.get("name") if author else "BagPackStories"
        categories = post.get("categories") or []
        category = None
        if categories and is_object_id(categories[0]):
            category = db["category"].find_one({"_id": to_object_id(categories[0])}, {"name": 1})
        post["category_name"] = category.get("name") if category else "Travel"
    return posts


class NewsletterScheduler:
    def __init__(self, cron: str = None, timezone: str = None, service: EmailService = None):
        self.cron = cron or config.NEWSLETTER_CRON
        self.timezone = timezone or config.TIMEZONE
        self.service = service or email_service
        self._scheduler: Optional[BackgroundScheduler] = None
        self._lock = threading.Lock()
        self.last_run: Optional[Dict[str, Any]] = None

    # ---------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------
    def start(self) -> bool:
        with self._lock:
            if self._scheduler is not None:
                logger.info("Newsletter scheduler is already running")
                return False
            scheduler = BackgroundScheduler(timezone=self.timezone)
            scheduler.add_job(
                self._run_job,
                CronTrigger.from_crontab(self.cron, timezone=self.timezone),
                id=JOB_ID,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            scheduler.start()
            self._scheduler = scheduler
        logger.info("Newsletter scheduler started with cron '%s' (%s)", self.cron, self.timezone)
        return True

    def stop(self) -> bool:
        with self._lock:
            if self._scheduler is None:
                logger.info("Newsletter scheduler is not running")
                return False
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        logger.info("Newsletter scheduler stopped")
        return True

    def is_running(self) -> bool:
        return self._scheduler is not None

    def status(self) -> Dict[str, Any]:
        next_run = None
        if self._scheduler is not None:
            job = self._scheduler.get_job(JOB_ID)
            if job is not None and job.next_run_time is not None:
                next_run = job.next_run_time.isoformat()
        return {
            "isRunning": self.is_running(),
            "cron": self.cron,
            "timezone": self.timezone,
            "nextRun": next_run,
            "lastRun": self.last_run,
        }

    def _run_job(self):
        logger.info("Starting scheduled weekly newsletter send")
        try:
            self.send_weekly_newsletter()
        except Exception:
            logger.exception("Weekly newsletter job failed")

    # ---------------------------------------------------------------
    # Sending
    # ---------------------------------------------------------------
    def send_weekly_newsletter(self) -> Dict[str, Any]:
        now = now_utc()
        week_ago = now - timedelta(days=7)
        posts = list(
            db["post"]
            .find({"status": "published", "published_at": {"$gte": week_ago, "$lte": now}})
            .sort("published_at", DESCENDING)
            .limit(10)
        )
        logger.info("Found %d posts published since %s", len(posts), week_ago.isoformat())
        if not posts:
            self.last_run = {"at": now.isoformat(), "skipped": "no posts"}
            return {"skipped": True, "reason": "No posts published this week", "posts": 0, "sent": 0}

        subscribers = get_documents("newsletter", {"status": "subscribed", "is_active": True})
        if not subscribers:
            self.last_run = {"at": now.isoformat(), "skipped": "no subscribers"}
            return {"skipped": True, "reason": "No active subscribers", "posts": len(posts), "sent": 0}

        summary = self.service.send_weekly_newsletter(
            subscribers, _with_author_and_category(posts), week_ago, now, _site_social_links()
        )
        self.last_run = {"at": now.isoformat(), **summary}
        logger.info("Newsletter sent: %d posts to %d subscribers", len(posts), summary["sent"])
        return {"skipped": False, **summary}

    def send_test_newsletter(self, email: str = None) -> bool:
        recipient = email or (config.ADMIN_EMAILS[0] if config.ADMIN_EMAILS else None)
        if not recipient:
            logger.error("ADMIN_EMAIL not configured, cannot send test newsletter")
            return False
        posts = list(db["post"].find({"status": "published"}).sort("published_at", DESCENDING).limit(3))
        if not posts:
            logger.info("No posts available for test newsletter")
            return False
        now = now_utc()
        summary = self.service.send_weekly_newsletter(
            [{"email": recipient, "name": "Test Admin"}],
            _with_author_and_category(posts),
            now - timedelta(days=7),
            now,
            _site_social_links(),
        )
        return summary["sent"] > 0

    def stats(self) -> Dict[str, int]:
        week_ago = now_utc() - timedelta(days=7)
        return {
            "totalSubscribers": db["newsletter"].count_documents({}),
            "activeSubscribers": db["newsletter"].count_documents({"status": "subscribed", "is_active": True}),
            "postsThisWeek": db["post"].count_documents(
                {"status": "published", "published_at": {"$gte": week_ago}}
            ),
        }


newsletter_scheduler = NewsletterScheduler()
