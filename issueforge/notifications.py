"""Chat notifications (Slack, Telegram).

Notifications are fire-and-forget: delivery failures are logged and never
interrupt issue processing.
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

import httpx

if TYPE_CHECKING:
    from issueforge.config import NotificationsConfig

log = logging.getLogger(__name__)

HTTP_TIMEOUT = 5.0

AGENT_EMOJI = {
    "Strategist": ":dart:",
    "Architect": ":building_construction:",
    "Coder": ":computer:",
    "Tester": ":test_tube:",
    "Reviewer": ":memo:",
}


class Notifier(ABC):
    """Formats and delivers notification events for one chat platform."""

    name = "base"

    def __init__(self, client: Optional[httpx.Client] = None):
        self.client = client

    def send(self, event: str, message: dict[str, Any]) -> None:
        """Format ``message`` for ``event`` and deliver it.

        Raises:
            httpx.HTTPError: If delivery failed
        """
        formatter = getattr(self, f"format_{event}")
        self.post(formatter(message))

    def _post_json(self, url: str, payload: dict[str, Any]) -> None:
        if self.client is not None:
            response = self.client.post(url, json=payload, timeout=HTTP_TIMEOUT)
        else:
            response = httpx.post(url, json=payload, timeout=HTTP_TIMEOUT)
        response.raise_for_status()

    @abstractmethod
    def post(self, payload: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def format_complete(self, message: dict[str, Any]) -> dict[str, Any]:
        pass

    @abstractmethod
    def format_agent_response(self, message: dict[str, Any]) -> dict[str, Any]:
        pass

    @abstractmethod
    def format_issue_start(self, message: dict[str, Any]) -> dict[str, Any]:
        pass

    @abstractmethod
    def format_scheduled(self, message: dict[str, Any]) -> dict[str, Any]:
        pass


class SlackNotifier(Notifier):
    """Posts attachments to a Slack incoming webhook."""

    name = "slack"

    def __init__(self, webhook_url: str, client: Optional[httpx.Client] = None):
        if not webhook_url:
            raise ValueError("Slack webhook URL is required")
        super().__init__(client)
        self.webhook_url = webhook_url

    def post(self, payload: dict[str, Any]) -> None:
        self._post_json(self.webhook_url, payload)

    @staticmethod
    def _issue_field(message: dict[str, Any]) -> dict[str, Any]:
        return {
            "title": "Issue",
            "value": f"#{message['issue_number']}: {message['issue_title']}",
            "short": False,
        }

    def format_complete(self, message: dict[str, Any]) -> dict[str, Any]:
        if message.get("status") == "success":
            return {"attachments": [{
                "color": "good",
                "title": "✅ Issue Analysis Complete",
                "fields": [
                    self._issue_field(message),
                    {"title": "Status", "value": "Pull Request Created", "short": True},
                    {"title": "PR", "value": f"<{message.get('pr_url')}|#{message.get('pr_number')}>", "short": True},
                ],
            }]}
        return {"attachments": [{
            "color": "warning",
            "title": "⚠️ Issue Analysis Escalated",
            "fields": [
                self._issue_field(message),
                {"title": "Status", "value": f"Escalated after {message.get('iteration_count')} iterations", "short": True},
                {"title": "Action Required", "value": "Manual review needed", "short": True},
            ],
        }]}

    def format_agent_response(self, message: dict[str, Any]) -> dict[str, Any]:
        agent = message["agent_name"]
        attachment = {
            "color": "#36a64f",
            "title": f"{AGENT_EMOJI.get(agent, ':robot_face:')} {agent} Agent",
            "fields": [
                self._issue_field(message),
                {"title": "Action", "value": message["action"], "short": True},
                {"title": "Duration", "value": f"{message['duration']}s", "short": True},
            ],
        }
        if message.get("output_preview"):
            attachment["text"] = f"```{message['output_preview']}```"
        return {"attachments": [attachment]}

    def format_issue_start(self, message: dict[str, Any]) -> dict[str, Any]:
        return {"attachments": [{
            "color": "#3498db",
            "title": ":rocket: Issue Processing Started",
            "fields": [
                self._issue_field(message),
                {"title": "Project", "value": str(message["project_path"]), "short": True},
                {"title": "Iteration", "value": f"{message['iteration']}/{message['max_iterations']}", "short": True},
            ],
        }]}

    def format_scheduled(self, message: dict[str, Any]) -> dict[str, Any]:
        return {"attachments": [{
            "color": "#9b59b6",
            "title": ":alarm_clock: Issue Scheduled",
            "fields": [
                self._issue_field(message),
                {"title": "Scheduled For", "value": message["target_time"].strftime("%Y-%m-%d %H:%M"), "short": True},
            ],
        }]}


class TelegramNotifier(Notifier):
    """Sends Markdown messages through the Telegram Bot API."""

    name = "telegram"

    def __init__(self, bot_token: str, chat_id: str, client: Optional[httpx.Client] = None):
        if not bot_token or not chat_id:
            raise ValueError("Telegram bot token and chat id are required")
        super().__init__(client)
        self.chat_id = chat_id
        self.api_url = f"https://api.telegram.org/bot{bot_token}/sendMessage"

    def post(self, payload: dict[str, Any]) -> None:
        self._post_json(self.api_url, payload)

    def _wrap(self, text: str) -> dict[str, Any]:
        return {"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"}

    def format_complete(self, message: dict[str, Any]) -> dict[str, Any]:
        issue = f"#{message['issue_number']}: {message['issue_title']}"
        if message.get("status") == "success":
            return self._wrap(
                "✅ *Issue Analysis Complete*\n\n"
                f"*Issue:* {issue}\n"
                "*Status:* Pull Request Created\n"
                f"*PR:* [#{message.get('pr_number')}]({message.get('pr_url')})"
            )
        return self._wrap(
            "⚠️ *Issue Analysis Escalated*\n\n"
            f"*Issue:* {issue}\n"
            f"*Status:* Escalated after {message.get('iteration_count')} iterations\n"
            "*Action Required:* Manual review needed"
        )

    def format_agent_response(self, message: dict[str, Any]) -> dict[str, Any]:
        text = (
            f"🤖 *{message['agent_name']} Agent*\n\n"
            f"*Issue:* #{message['issue_number']}: {message['issue_title']}\n"
            f"*Action:* {message['action']}\n"
            f"*Duration:* {message['duration']}s"
        )
        if message.get("output_preview"):
            text += f"\n\n```\n{message['output_preview']}\n```"
        return self._wrap(text)

    def format_issue_start(self, message: dict[str, Any]) -> dict[str, Any]:
        return self._wrap(
            "🚀 *Issue Processing Started*\n\n"
            f"*Issue:* #{message['issue_number']}: {message['issue_title']}\n"
            f"*Project:* {message['project_path']}\n"
            f"*Iteration:* {message['iteration']}/{message['max_iterations']}"
        )

    def format_scheduled(self, message: dict[str, Any]) -> dict[str, Any]:
        return self._wrap(
            "⏰ *Issue Scheduled*\n\n"
            f"*Issue:* #{message['issue_number']}: {message['issue_title']}\n"
            f"*Scheduled For:* {message['target_time'].strftime('%Y-%m-%d %H:%M')}"
        )


def create_notifier(config: "NotificationsConfig") -> Optional[Notifier]:
    """Build the configured notifier, or None when notifications are off.

    Raises:
        ValueError: If the provider is unknown or missing credentials
    """
    if config.provider == "slack":
        return SlackNotifier(config.webhook_url or "")
    if config.provider == "telegram":
        return TelegramNotifier(config.bot_token or "", config.chat_id or "")
    if config.provider == "none":
        return None
    raise ValueError(f"Unknown notification provider: {config.provider}")


class NotificationService:
    """Entry point used by the pipeline to emit notifications."""

    def __init__(
        self,
        config: Optional["NotificationsConfig"] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.config = config
        self.notifier = notifier

        if notifier is None and config is not None and config.enabled:
            try:
                self.notifier = create_notifier(config)
                if self.notifier:
                    log.info("Notification provider initialized: %s", config.provider)
            except ValueError as e:
                log.warning("Failed to initialize %s provider: %s", config.provider, e)

    @property
    def enabled(self) -> bool:
        if self.notifier is None:
            return False
        return self.config is None or self.config.enabled

    def _deliver(self, event: str, message: dict[str, Any]) -> None:
        if not self.enabled:
            return
        try:
            self.notifier.send(event, message)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            log.error(
                "Notification %s failed for issue #%s: %s",
                event, message.get("issue_number"), e,
            )

    def notify_analysis_complete(
        self,
        issue_number: int,
        issue_title: str,
        status: str,
        pr_number: Optional[int] = None,
        pr_url: Optional[str] = None,
        iteration_count: Optional[int] = None,
    ) -> None:
        self._deliver("complete", {
            "issue_number": issue_number,
            "issue_title": issue_title,
            "status": status,
            "pr_number": pr_number,
            "pr_url": pr_url,
            "iteration_count": iteration_count,
        })

    def notify_agent_response(
        self,
        agent_name: str,
        action: str,
        issue_number: int,
        issue_title: str,
        duration: int,
        output_preview: Optional[str] = None,
    ) -> None:
        if self.config is not None and not self.config.send_all_responses:
            return
        self._deliver("agent_response", {
            "agent_name": agent_name,
            "action": action,
            "issue_number": issue_number,
            "issue_title": issue_title,
            "duration": duration,
            "output_preview": output_preview,
        })

    def notify_issue_start(
        self,
        issue_number: int,
        issue_title: str,
        project_path: str,
        iteration: int,
        max_iterations: int,
    ) -> None:
        self._deliver("issue_start", {
            "issue_number": issue_number,
            "issue_title": issue_title,
            "project_path": project_path,
            "iteration": iteration,
            "max_iterations": max_iterations,
        })

    def notify_scheduled(self, issue_number: int, issue_title: str, target_time) -> None:
        self._deliver("scheduled", {
            "issue_number": issue_number,
            "issue_title": issue_title,
            "target_time": target_time,
        })
