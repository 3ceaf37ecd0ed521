"""
Productivity assistant backed by an OpenAI chat-completion model.

The client is created from an explicit ``AssistantConfig`` per assistant
instance; there is no module-level client.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import openai

from .settings import Settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful productivity assistant that provides personalized advice based on the user's "
    "tasks, habits, and goals. Be specific, actionable, and encouraging in your responses. Focus on "
    "practical suggestions that can help improve the user's productivity and well-being."
)

FALLBACK_REPLY = "I apologize, but I couldn't generate a response at this time."

ADVICE_FOCUS = (
    "Task prioritization and time management",
    "Habit formation and consistency",
    "Goal progress and milestone achievement",
    "Work-life balance",
    "Productivity patterns and potential improvements",
)


class AssistantError(Exception):
    """The language model could not produce an answer."""


@dataclass(frozen=True)
class AssistantConfig:
    api_key: str
    model: str = "gpt-4"
    temperature: float = 0.7
    max_tokens: int = 1000

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["AssistantConfig"]:
        """Build a config from settings, or None when no API key is configured."""
        if not settings.openai_api_key:
            return None
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            temperature=settings.openai_temperature,
            max_tokens=settings.openai_max_tokens,
        )


def _format_day(value: Any) -> str:
    return value.strftime("%Y-%m-%d") if hasattr(value, "strftime") else str(value)


# PUBLIC_INTERFACE
def build_context_prompt(
    tasks: Sequence[Mapping[str, Any]],
    habits: Sequence[Mapping[str, Any]],
    goals: Sequence[Mapping[str, Any]],
    milestones: Iterable[Mapping[str, Any]] = (),
) -> str:
    """
    Render the user's current data as the preamble of an assistant prompt.
    The user's question is appended after the trailing "User's question: ".
    """
    by_goal: Dict[Any, List[Mapping[str, Any]]] = {}
    for m in milestones:
        by_goal.setdefault(m["goal_id"], []).append(m)

    lines = [
        "You are a productivity AI assistant helping a user with their personal development. "
        "Here's their current data:",
        "",
        f"Tasks ({len(tasks)}):",
    ]
    for task in tasks:
        detail = f"{task['priority']} priority"
        if task.get("due_date"):
            detail += f", due {_format_day(task['due_date'])}"
        done = " [Completed]" if task.get("completed") else ""
        lines.append(f"- {task['title']} ({detail}){done}")

    lines += ["", f"Habits ({len(habits)}):"]
    lines += [f"- {habit['name']} ({habit['frequency']})" for habit in habits]

    lines += ["", f"Goals ({len(goals)}):"]
    for goal in goals:
        lines.append(f"- {goal['title']} ({goal['progress']}% complete, {goal['status']})")
        goal_milestones = by_goal.get(goal["id"], [])
        if goal_milestones:
            lines.append("  Milestones:")
            for m in goal_milestones:
                done = " [Completed]" if m.get("completed") else ""
                lines.append(f"    * {m['title']}{done}")

    lines += ["", "Based on this data, provide personalized, actionable advice and suggestions. Consider:"]
    lines += [f"{i}. {focus}" for i, focus in enumerate(ADVICE_FOCUS, start=1)]
    lines += ["", "User's question: "]
    return "\n".join(lines)


class ProductivityAssistant:
    """Sends prompts to the configured chat model."""

    def __init__(self, config: AssistantConfig, client: Any = None) -> None:
        self._config = config
        self._client = client if client is not None else openai.OpenAI(api_key=config.api_key)

    @property
    def model(self) -> str:
        return self._config.model

    def ask(self, prompt: str) -> str:
        """
        Return the model's reply to ``prompt``.

        Raises:
            AssistantError: when the API call fails.
        """
        try:
            completion = self._client.chat.completions.create(
                model=self._config.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
            )
        except openai.OpenAIError as e:
            logger.exception("Chat completion failed for model %s", self._config.model)
            raise AssistantError("Failed to get AI response") from e

        if not completion.choices:
            return FALLBACK_REPLY
        return completion.choices[0].message.content or FALLBACK_REPLY
