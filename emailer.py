"""
Transactional and newsletter email over SMTP (Brevo relay).

Templates live in the "emailtemplate" collection and use {{variable}}
placeholders. One level of dotted access is supported for dict values,
e.g. {{socialLinks.instagram}}.
"""
import logging
import smtplib
import time
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Dict, Iterable, List, Optional

import config
from database import db, now_utc

logger = logging.getLogger(__name__)


def render_template(template: str, variables: Dict[str, Any]) -> str:
    result = template or ""
    for key, value in variables.items():
        if isinstance(value, dict):
            for nested_key, nested_value in value.items():
                result = result.replace("{{%s.%s}}" % (key, nested_key), str(nested_value))
        else:
            result = result.replace("{{%s}}" % key, str(value) if value else "")
    return result


# -------------------------------------------------------------------
# Default templates (seeded when missing)
# -------------------------------------------------------------------
DEFAULT_TEMPLATES: List[Dict[str, Any]] = [
    {
        "key": "contributor_submission",
        "name": "Contributor Post Submission",
        "type": "contributor_submission",
        "subject": "New Post Submitted: {{postTitle}} - BagPackStories",
        "html_content": (
            "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">"
            "<h1 style=\"color: #2d3748;\">New post awaiting review</h1>"
            "<h2>{{postTitle}}</h2><p>{{postExcerpt}}</p>"
            "<p><strong>Author:</strong> {{contributorName}} ({{contributorEmail}})<br>"
            "<strong>Category:</strong> {{postCategory}}<br>"
            "<strong>Submitted:</strong> {{submissionDate}}<br>"
            "<strong>Word Count:</strong> {{wordCount}} words</p>"
            "<p><a href=\"{{reviewUrl}}\">Review post</a></p></div>"
        ),
        "text_content": (
            "New post awaiting review\n\nTitle: {{postTitle}}\n"
            "Author: {{contributorName}} ({{contributorEmail}})\nCategory: {{postCategory}}\n"
            "Submitted: {{submissionDate}}\nWord Count: {{wordCount}} words\n\n"
            "{{postExcerpt}}\n\nReview the post at: {{reviewUrl}}"
        ),
        "variables": [
            "postTitle", "postExcerpt", "contributorName", "contributorEmail",
            "postCategory", "submissionDate", "wordCount", "reviewUrl",
        ],
        "description": "Sent to admins when a contributor submits a post for review",
    },
    {
        "key": "post_approved",
        "name": "Post Approved",
        "type": "post_approved",
        "subject": "Your post \"{{postTitle}}\" has been approved! - BagPackStories",
        "html_content": (
            "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">"
            "<h1 style=\"color: #065f46;\">Congratulations, {{contributorName}}!</h1>"
            "<h2>{{postTitle}}</h2>"
            "<p><strong>Published:</strong> {{publishedDate}}<br>"
            "<strong>Category:</strong> {{postCategory}}</p>"
            "<p><a href=\"{{postUrl}}\">View your post</a> | <a href=\"{{shareUrl}}\">Share it</a></p>"
            "<p><a href=\"mailto:{{supportEmail}}\">Contact us</a> if you have any questions.</p></div>"
        ),
        "text_content": (
            "Congratulations, {{contributorName}}!\n\nTitle: {{postTitle}}\n"
            "Published: {{publishedDate}}\nCategory: {{postCategory}}\n\n"
            "View your post: {{postUrl}}\nShare it: {{shareUrl}}\n\n"
            "Contact us at {{supportEmail}} for any questions."
        ),
        "variables": [
            "contributorName", "postTitle", "publishedDate", "postCategory",
            "postUrl", "shareUrl", "supportEmail",
        ],
        "description": "Sent to the author when a post is published",
    },
    {
        "key": "weekly_newsletter",
        "name": "Weekly Newsletter",
        "type": "weekly_newsletter",
        "subject": "This Week in Travel: {{weeklyPostCount}} New Stories from BagPackStories",
        "html_content": (
            "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">"
            "<h1>This Week in Travel</h1><p>{{weekRange}} &bull; {{weeklyPostCount}} New Stories</p>"
            "<p>Hello {{subscriberName}}!</p>{{featuredPosts}}"
            "<p><a href=\"{{blogUrl}}\">Read all stories</a></p>"
            "<p><a href=\"{{socialLinks.instagram}}\">Instagram</a> "
            "<a href=\"{{socialLinks.facebook}}\">Facebook</a> "
            "<a href=\"{{socialLinks.twitter}}\">Twitter</a></p>"
            "<p style=\"font-size: 12px;\"><a href=\"{{unsubscribeUrl}}\">Unsubscribe</a> | "
            "<a href=\"{{managePreferencesUrl}}\">Manage Preferences</a></p></div>"
        ),
        "text_content": (
            "This Week in Travel\n{{weekRange}}\n\nHello {{subscriberName}}!\n\n"
            "This week we published {{weeklyPostCount}} new travel stories.\n\n"
            "{{featuredPostsText}}\n\nRead all stories: {{blogUrl}}\n\n"
            "Unsubscribe: {{unsubscribeUrl}}\nManage preferences: {{managePreferencesUrl}}"
        ),
        "variables": [
            "subscriberName", "weekRange", "weeklyPostCount", "featuredPosts",
            "featuredPostsText", "blogUrl", "socialLinks", "unsubscribeUrl",
            "managePreferencesUrl",
        ],
        "description": "Weekly digest of newly published posts",
    },
]


def ensure_default_templates() -> int:
    """Insert any missing default template; returns how many were created."""
    if db is None:
        return 0
    created = 0
    for tpl in DEFAULT_TEMPLATES:
        ts = now_utc()
        fields = {k: v for k, v in tpl.items() if k != "key"}
        res = db["emailtemplate"].update_one(
            {"key": tpl["key"]},
            {"$setOnInsert": {**fields, "is_active": True, "created_at": ts, "updated_at": ts}},
            upsert=True,
        )
        if res.upserted_id is not None:
            created += 1
    if created:
        logger.info("Seeded %d default email templates", created)
    return created


def _fmt_date(value: Optional[datetime]) -> str:
    value = value or now_utc()
    return value.strftime("%B %d, %Y").replace(" 0", " ")


class EmailService:
    def __init__(self, host: str = None, port: int = None, username: str = None,
                 password: str = None, secure: bool = None):
        self.host = host or config.SMTP_HOST
        self.port = port or config.SMTP_PORT
        self.username = username if username is not None else config.SMTP_USERNAME
        self.password = password if password is not None else config.SMTP_PASSWORD
        self.secure = config.SMTP_SECURE if secure is None else secure

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)

    # ---------------------------------------------------------------
    # Transport
    # ---------------------------------------------------------------
    def _connect(self) -> smtplib.SMTP:
        if self.secure:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=30)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=30)
            server.starttls()
        server.login(self.username, self.password)
        return server

    def send_email(self, to: str, subject: str, html: str, text: str = "",
                   to_name: str = None) -> bool:
        if not self.configured:
            logger.warning("SMTP credentials not configured, skipping email to %s", to)
            return False

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((config.FROM_NAME, config.FROM_EMAIL))
        msg["To"] = formataddr((to_name, to)) if to_name else to
        msg.set_content(text or "This message requires an HTML-capable email client.")
        if html:
            msg.add_alternative(html, subtype="html")

        try:
            with self._connect() as server:
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", to, e)
            return False
        logger.info("Email sent to %s: %s", to, subject)
        return True

    def test_config(self) -> bool:
        if not self.configured:
            return False
        try:
            with self._connect() as server:
                server.noop()
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP configuration test failed: %s", e)
            return False
        return True

    # ---------------------------------------------------------------
    # Templates
    # ---------------------------------------------------------------
    def get_template(self, key: str) -> Optional[dict]:
        tpl = db["emailtemplate"].find_one({"key": key, "is_active": True}) if db is not None else None
        if tpl:
            return tpl
        return next((t for t in DEFAULT_TEMPLATES if t["key"] == key), None)

    def send_template(self, key: str, to: str, variables: Dict[str, Any], to_name: str = None) -> bool:
        tpl = self.get_template(key)
        if not tpl:
            logger.error("Email template %s not found", key)
            return False
        return self.send_email(
            to,
            render_template(tpl["subject"], variables),
            render_template(tpl["html_content"], variables),
            render_template(tpl.get("text_content") or "", variables),
            to_name=to_name,
        )

    def send_custom_email(self, to: Iterable[str], subject: str, html: str, text: str = "",
                          variables: Dict[str, Any] = None) -> Dict[str, int]:
        """Render and send one message per recipient; returns sent/failed counts."""
        variables = variables or {}
        subject = render_template(subject, variables)
        html = render_template(html, variables)
        text = render_template(text, variables)
        summary = {"sent": 0, "failed": 0}
        for recipient in to:
            ok = self.send_email(recipient, subject, html, text)
            summary["sent" if ok else "failed"] += 1
        return summary

    # ---------------------------------------------------------------
    # Notifications
    # ---------------------------------------------------------------
    def send_contributor_submission_notification(self, post: dict, contributor: dict,
                                                 category_name: str = "Uncategorized",
                                                 recipients: Iterable[str] = None) -> bool:
        recipients = list(recipients if recipients is not None else config.ADMIN_EMAILS)
        if not recipients:
            logger.warning("No admin email configured for submission notifications")
            return False
        content = post.get("content") or ""
        variables = {
            "postTitle": post.get("title"),
            "postExcerpt": post.get("excerpt") or content[:200] + "...",
            "contributorName": contributor.get("name"),
            "contributorEmail": contributor.get("email"),
            "postCategory": category_name,
            "submissionDate": _fmt_date(post.get("submitted_at")),
            "wordCount": str(len(content.split())),
            "reviewUrl": f"{config.FRONTEND_URL}/admin/posts/{post.get('_id')}",
        }
        results = [self.send_template("contributor_submission", to, variables) for to in recipients]
        return any(results)

    def send_post_approved_notification(self, post: dict, contributor: dict,
                                        category_name: str = "Travel") -> bool:
        post_url = f"{config.FRONTEND_URL}/blog/{post.get('slug')}"
        variables = {
            "contributorName": contributor.get("name"),
            "postTitle": post.get("title"),
            "publishedDate": _fmt_date(post.get("published_at")),
            "postCategory": category_name,
            "viewCount": str(post.get("view_count", 0)),
            "postUrl": post_url,
            "shareUrl": post_url,
            "supportEmail": config.SUPPORT_EMAIL,
        }
        return self.send_template("post_approved", contributor["email"], variables,
                                  to_name=contributor.get("name"))

    def send_password_reset_email(self, email: str, name: str, reset_url: str) -> bool:
        html = (
            f"<p>Hi {name},</p><p>You requested a password reset for your BagPackStories account.</p>"
            f"<p><a href=\"{reset_url}\">Reset your password</a></p>"
            f"<p>This link expires in {config.RESET_TOKEN_MINUTES} minutes. "
            "If you did not request it, you can ignore this email.</p>"
        )
        text = (
            f"Hi {name},\n\nReset your BagPackStories password: {reset_url}\n\n"
            f"This link expires in {config.RESET_TOKEN_MINUTES} minutes."
        )
        return self.send_email(email, "Password Reset Request - BagPackStories", html, text, to_name=name)

    def send_verification_email(self, email: str, name: str, verify_url: str) -> bool:
        html = (
            f"<p>Hi {name or 'there'},</p>"
            f"<p>Please confirm your email address: <a href=\"{verify_url}\">Verify email</a></p>"
        )
        text = f"Hi {name or 'there'},\n\nPlease confirm your email address: {verify_url}"
        return self.send_email(email, "Confirm your email - BagPackStories", html, text, to_name=name)

    # ---------------------------------------------------------------
    # Newsletter
    # ---------------------------------------------------------------
    def send_weekly_newsletter(self, subscribers: List[dict], posts: List[dict],
                               week_start: datetime, week_end: datetime,
                               social_links: Dict[str, str] = None) -> Dict[str, int]:
        summary = {"subscribers": len(subscribers), "posts": len(posts), "sent": 0, "failed": 0}
        tpl = self.get_template("weekly_newsletter")
        if not tpl:
            logger.error("Weekly newsletter email template not found")
            return summary
        if not subscribers or not posts:
            logger.info("Nothing to send: %d subscribers, %d posts", len(subscribers), len(posts))
            return summary

        featured = posts[:3]
        featured_html = "".join(_post_card_html(p) for p in featured)
        featured_text = "\n---\n".join(_post_card_text(p) for p in featured)
        week_range = f"{week_start.strftime('%b %d')} - {week_end.strftime('%b %d, %Y')}"

        for processed, subscriber in enumerate(subscribers, start=1):
            try:
                variables = {
                    "subscriberName": subscriber.get("name") or "Fellow Traveler",
                    "weekRange": week_range,
                    "weeklyPostCount": str(len(posts)),
                    "featuredPosts": featured_html,
                    "featuredPostsText": featured_text,
                    "blogUrl": f"{config.FRONTEND_URL}/blog",
                    "socialLinks": social_links or {},
                    "unsubscribeUrl": f"{config.FRONTEND_URL}/newsletter/unsubscribe?email={subscriber['email']}",
                    "managePreferencesUrl": f"{config.FRONTEND_URL}/newsletter/preferences?email={subscriber['email']}",
                }
                ok = self.send_email(
                    subscriber["email"],
                    render_template(tpl["subject"], variables),
                    render_template(tpl["html_content"], variables),
                    render_template(tpl.get("text_content") or "", variables),
                    to_name=subscriber.get("name"),
                )
                summary["sent" if ok else "failed"] += 1
            except Exception:
                logger.exception("Failed to send newsletter to %s", subscriber.get("email"))
                summary["failed"] += 1

            if processed % config.NEWSLETTER_BATCH_SIZE == 0:
                logger.info("Newsletter progress: %d/%d processed, %d sent",
                            processed, len(subscribers), summary["sent"])
                time.sleep(config.NEWSLETTER_BATCH_DELAY)

        logger.info("Weekly newsletter finished: %d/%d delivered", summary["sent"], len(subscribers))
        return summary


def _excerpt(post: dict) -> str:
    return post.get("excerpt") or (post.get("content") or "")[:120] + "..."


def _post_card_html(post: dict) -> str:
    url = f"{config.FRONTEND_URL}/blog/{post.get('slug')}"
    return (
        "<div style=\"border: 1px solid #e2e8f0; border-radius: 8px; padding: 20px; margin-bottom: 20px;\">"
        f"<h3><a href=\"{url}\">{post.get('title')}</a></h3>"
        f"<p>{_excerpt(post)}</p>"
        f"<div style=\"font-size: 12px; color: #718096;\">By {post.get('author_name') or 'BagPackStories'}"
        f" &bull; {post.get('category_name') or 'Travel'}</div></div>"
    )


def _post_card_text(post: dict) -> str:
    return f"{post.get('title')}\n{_excerpt(post)}\nRead more: {config.FRONTEND_URL}/blog/{post.get('slug')}"


email_service = EmailService()
